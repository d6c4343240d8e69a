"""
Fire-and-forget progress reporting.
"""

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


def notify(on_progress: Optional[ProgressCallback], message: str) -> None:
    """Send a progress message; a failing sink never interrupts the caller."""
    logger.info(message)
    if on_progress is None:
        return
    try:
        on_progress(message)
    except Exception as e:
        logger.debug(f"Progress callback failed: {e}")
