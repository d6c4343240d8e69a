"""
Run log: one entry per routine execution, newest first.

Entries are created once a run has scrape results and are then updated in
place (by id) as the run moves through enrichment and sync.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from digest.config import get_settings
from digest.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

RunStatus = Literal["success", "error", "none", "running"]
SyncStatus = Literal["success", "failed", "pending"]


class LogDetail(BaseModel):
    """One item that a run scraped or synced."""

    title: str
    url: str
    source: str


class RunLogEntry(BaseModel):
    """A single routine run."""

    id: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    status: RunStatus
    message: str
    item_count: int = 0
    sync_status: Optional[SyncStatus] = None
    sync_error: Optional[str] = None
    notebook_url: Optional[str] = None
    details: Optional[list[LogDetail]] = None


def check_sync_transition(current: Optional[str], new: Optional[str]) -> None:
    """
    Validate a sync_status change.

    pending moves to success or failed; nothing moves back to pending, and a
    successful sync is final. A failed sync may be retried (resync).

    Raises:
        ValueError: if the transition is not allowed
    """
    if new is None or new == current:
        return
    if current in (None, "pending"):
        return
    if current == "failed" and new == "success":
        return
    raise ValueError(f"Illegal sync status transition: {current} -> {new}")


class RunLogStore:
    """
    File-backed, bounded run log.

    Usage:
        log = RunLogStore()
        log.append(RunLogEntry(id=run_id, status="success", message="..."))
        log.update_by_id(run_id, sync_status="success")
    """

    def __init__(self, path: Optional[Path] = None, limit: Optional[int] = None):
        settings = get_settings()
        self.path = Path(path) if path else settings.run_log_path
        self.limit = limit or settings.run_log_limit

    def read_all(self) -> list[RunLogEntry]:
        """All entries, newest first. Unreadable files read as empty."""
        try:
            data = read_json(self.path)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable run log at {self.path}, treating as empty: {e}")
            return []

        if not isinstance(data, list):
            return []

        entries = []
        for row in data:
            try:
                entries.append(RunLogEntry.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed run log entry: {e}")
        return entries

    def get(self, entry_id: str) -> Optional[RunLogEntry]:
        for entry in self.read_all():
            if entry.id == entry_id:
                return entry
        return None

    def append(self, entry: RunLogEntry) -> None:
        """Add an entry at the front, dropping the oldest beyond the limit."""
        entries = [entry, *self.read_all()][: self.limit]
        self._write(entries)

    def update_by_id(self, entry_id: str, **fields) -> Optional[RunLogEntry]:
        """
        Merge fields into the entry with the given id.

        Args:
            entry_id: Id of the run to update
            **fields: RunLogEntry fields to overwrite

        Returns:
            The updated entry, or None if no entry has that id

        Raises:
            ValueError: on an illegal sync_status transition
        """
        entries = self.read_all()
        for index, entry in enumerate(entries):
            if entry.id != entry_id:
                continue

            if "sync_status" in fields:
                check_sync_transition(entry.sync_status, fields["sync_status"])

            updated = RunLogEntry.model_validate({**entry.model_dump(), **fields})
            entries[index] = updated
            self._write(entries)
            return updated

        logger.warning(f"Run log entry not found: {entry_id}")
        return None

    def _write(self, entries: list[RunLogEntry]) -> None:
        write_json_atomic(self.path, [e.model_dump(mode="json") for e in entries])
