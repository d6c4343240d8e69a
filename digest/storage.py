"""
Whole-file JSON persistence shared by the registry, history and run log.

Every collaborator is read-modify-write: read the full document, change it in
memory, write the full document back. Writes go through a temp file and an
atomic replace so a crash mid-write never leaves a truncated file behind.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def read_json(path: Path) -> Any:
    """
    Read and decode a JSON file.

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: if the content is not valid JSON
    """
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, obj: Any) -> None:
    """Write JSON atomically: write to temp, fsync, replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp = path.with_suffix(path.suffix + ".tmp")

    with temp.open("w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())

    os.replace(temp, path)
    logger.debug(f"Wrote {path}")
