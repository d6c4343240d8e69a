"""
History of previously synced item URLs, used for deduplication.

The history is an ordered list of URLs persisted as history.json, oldest
first, capped to the most recent entries. A URL in the history is never
reported as new again.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence, TypeVar

from digest.config import get_settings
from digest.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LIMIT = 1000


def filter_new(items: Sequence[T], history: Iterable[str]) -> list[T]:
    """
    Return the items whose url is not in history, keeping their order.

    Items only need a ``url`` attribute.
    """
    seen = set(history)
    return [item for item in items if item.url not in seen]


def record_synced(
    urls: Iterable[str], history: Sequence[str], limit: int = DEFAULT_LIMIT
) -> list[str]:
    """
    Union urls into history, deduplicate, and keep the newest ``limit`` entries.

    Existing entries keep their position; only previously unseen URLs are
    appended. Oldest entries are evicted first.
    """
    merged = list(dict.fromkeys([*history, *urls]))
    if len(merged) > limit:
        merged = merged[-limit:]
    return merged


class HistoryStore:
    """
    File-backed history of synced URLs.

    Usage:
        store = HistoryStore()
        new_items = store.filter_new(items)
        store.append([item.url for item in new_items])
    """

    def __init__(self, path: Optional[Path] = None, limit: Optional[int] = None):
        settings = get_settings()
        self.path = Path(path) if path else settings.history_path
        self.limit = limit or settings.history_limit

    def read(self) -> list[str]:
        """Read history; a missing or malformed file reads as empty."""
        try:
            data = read_json(self.path)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable history at {self.path}, treating as empty: {e}")
            return []

        if not isinstance(data, list):
            logger.warning(f"History at {self.path} is not a list, treating as empty")
            return []
        return [u for u in data if isinstance(u, str)]

    def append(self, urls: Iterable[str]) -> list[str]:
        """
        Record newly synced URLs.

        Args:
            urls: URLs to add (empty input is a no-op)

        Returns:
            The history after the update
        """
        urls = [u for u in urls if u]
        history = self.read()
        if not urls:
            return history

        updated = record_synced(urls, history, self.limit)
        write_json_atomic(self.path, updated)
        logger.info(f"History updated: {len(updated)} URLs tracked")
        return updated

    def filter_new(self, items: Sequence[T]) -> list[T]:
        return filter_new(items, self.read())
