"""
Daily routine orchestrator.

One run:
1. Scrape every enabled source and drop items already in the history
2. Enrich items from platforms that need a transcript, then drop the ones without
3. Log the run and commit the eligible URLs to the history
4. Push the eligible items into the day's notebook and ask for a summary

At most one run (or resync) is in flight at a time; a concurrent call is
rejected as "skipped" without touching any state.
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from typing import Callable, Literal, Optional

from digest.config import get_settings
from digest.history import HistoryStore
from digest.notebook.client import NotebookClient
from digest.pipeline.coordinator import ScrapeCoordinator
from digest.pipeline.enrichment import EnrichmentStage
from digest.progress import ProgressCallback, notify
from digest.registry import AppConfig, ConfigStore
from digest.run_log import RunLogEntry, RunLogStore
from digest.scrapers.base import ScrapedItem

logger = logging.getLogger(__name__)

RoutineStatus = Literal["success", "failed", "no_content", "skipped"]
ClientFactory = Callable[[AppConfig], NotebookClient]

ALREADY_RUNNING = "Routine is already running"
NO_NEW_CONTENT = "No new content found."
NO_ELIGIBLE_CONTENT = "No transcript-available content found to sync."


class RunNotFound(LookupError):
    """No run log entry has the requested id."""


class ResyncRejected(ValueError):
    """The run log entry already synced successfully."""


class NoItemsToSync(ResyncRejected):
    """The run log entry lists no items."""


@dataclass
class RoutineResult:
    """Outcome of one routine run."""

    status: RoutineStatus
    message: str
    scraped_items: list[dict] = field(default_factory=list)
    notebook_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def default_client_factory(config: AppConfig) -> NotebookClient:
    return NotebookClient(browser_path=config.external_browser_path)


def new_run_id() -> str:
    return uuid.uuid4().hex


class DailyRoutine:
    """
    Runs the scrape -> enrich -> log -> sync pipeline.

    Usage:
        routine = DailyRoutine()
        result = await routine.run(on_progress=print)

        # Push a previous run's items again
        result = await routine.resync(log_id)
    """

    def __init__(
        self,
        coordinator: Optional[ScrapeCoordinator] = None,
        enrichment: Optional[EnrichmentStage] = None,
        config_store: Optional[ConfigStore] = None,
        history: Optional[HistoryStore] = None,
        run_log: Optional[RunLogStore] = None,
        client_factory: Optional[ClientFactory] = None,
        close_on_finish: Optional[bool] = None,
    ):
        """
        Initialize the routine.

        Args:
            coordinator: Scrape coordinator (built from the same history/config stores if omitted)
            enrichment: Enrichment stage
            config_store: Source registry store
            history: History of synced URLs
            run_log: Run log store
            client_factory: Builds a NotebookClient for a registry snapshot
            close_on_finish: Release the notebook session when a run ends
        """
        settings = get_settings()
        self.config_store = config_store or ConfigStore()
        self.history = history or HistoryStore()
        self.run_log = run_log or RunLogStore()
        self.coordinator = coordinator or ScrapeCoordinator(history=self.history, config_store=self.config_store)
        self.enrichment = enrichment or EnrichmentStage(config_store=self.config_store)
        self.client_factory = client_factory or default_client_factory
        self.close_on_finish = settings.close_browser_on_finish if close_on_finish is None else close_on_finish

        self._lock = threading.Lock()
        self._owner: Optional[object] = None  # Token of the run holding the lock
        # Client left open by a run with close_on_finish=False
        self.open_client: Optional[NotebookClient] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def reset(self) -> None:
        """
        Clear the single-flight flag (tests, or recovery after a crash).

        A run still in flight keeps going but no longer holds the flag, so a
        new run may start alongside it; its own release becomes a no-op.
        """
        if self._lock.locked():
            self._owner = None
            self._lock.release()

    def _acquire(self) -> Optional[object]:
        """Take the flag, returning an ownership token, or None if busy."""
        if not self._lock.acquire(blocking=False):
            return None
        self._owner = token = object()
        return token

    def _release(self, token: object) -> None:
        if self._owner is token:
            self._owner = None
            self._lock.release()

    async def close_open_client(self) -> None:
        """Release a session a previous run left open for inspection."""
        if self.open_client is not None:
            client, self.open_client = self.open_client, None
            await client.close()

    async def _finish_client(self, client: Optional[NotebookClient], close: bool) -> None:
        if client is None:
            return
        if close:
            await client.close()
        else:
            self.open_client = client

    async def _enrich(
        self, items: list[ScrapedItem], config: AppConfig, on_progress: Optional[ProgressCallback]
    ) -> list[ScrapedItem]:
        """Enrich items in place and return the sync-eligible ones."""
        try:
            await self.enrichment.enrich_all(items, config, on_progress)
        except Exception:
            logger.exception("Enrichment stage failed, continuing with what is available")
        return self.enrichment.filter_eligible(items)

    async def run(
        self,
        on_progress: Optional[ProgressCallback] = None,
        close_on_finish: Optional[bool] = None,
    ) -> RoutineResult:
        """
        Execute one full run.

        Args:
            on_progress: Optional sink for human-readable progress messages
            close_on_finish: Override the instance default for releasing the session

        Returns:
            RoutineResult
        """
        token = self._acquire()
        if token is None:
            logger.warning("Routine already running, rejecting trigger")
            return RoutineResult(status="skipped", message=ALREADY_RUNNING)

        close = self.close_on_finish if close_on_finish is None else close_on_finish
        client: Optional[NotebookClient] = None
        try:
            # Scrape
            try:
                config = self.config_store.read()
                items = await self.coordinator.scrape_all(config, on_progress)
            except Exception as e:
                logger.exception("Scrape phase failed")
                notify(on_progress, f"Scrape phase failed: {e}")
                return RoutineResult(status="failed", message=f"Scrape phase failed: {e}", error=str(e))

            run_id = new_run_id()
            if not items:
                self.run_log.append(
                    RunLogEntry(id=run_id, status="none", message=NO_NEW_CONTENT, sync_status="pending")
                )
                notify(on_progress, NO_NEW_CONTENT)
                return RoutineResult(status="no_content", message=NO_NEW_CONTENT)

            eligible = await self._enrich(items, config, on_progress)

            if not eligible:
                scraped = [item.to_detail() for item in items]
                self.run_log.append(
                    RunLogEntry(
                        id=run_id,
                        status="none",
                        message=NO_ELIGIBLE_CONTENT,
                        item_count=len(items),
                        sync_status="pending",
                        details=scraped,
                    )
                )
                notify(on_progress, NO_ELIGIBLE_CONTENT)
                return RoutineResult(status="no_content", message=NO_ELIGIBLE_CONTENT, scraped_items=scraped)

            # Log and commit before syncing, so a failed sync never re-delivers
            details = [item.to_detail() for item in eligible]
            self.run_log.append(
                RunLogEntry(
                    id=run_id,
                    status="success",
                    message=f"Scraped {len(items)} items ({len(eligible)} valid). Syncing...",
                    item_count=len(eligible),
                    sync_status="pending",
                    details=details,
                )
            )
            self.history.append(item.url for item in eligible)

            # Sync
            await self.close_open_client()
            client = self.client_factory(config)
            try:
                notebook_url = await client.sync(eligible, on_progress=on_progress)
            except Exception as e:
                logger.exception(f"Notebook sync failed for run {run_id}")
                self.run_log.update_by_id(run_id, sync_status="failed", sync_error=str(e))
                notify(on_progress, f"Sync failed: {e}")
                return RoutineResult(
                    status="failed", message=f"Sync failed: {e}", scraped_items=details, error=str(e)
                )

            self.run_log.update_by_id(run_id, sync_status="success", notebook_url=notebook_url)
            message = f"Successfully synced {len(eligible)} items."
            notify(on_progress, message)
            return RoutineResult(
                status="success", message=message, scraped_items=details, notebook_url=notebook_url
            )
        finally:
            try:
                await self._finish_client(client, close)
            finally:
                self._release(token)

    async def resync(
        self,
        log_id: str,
        on_progress: Optional[ProgressCallback] = None,
        close_on_finish: Optional[bool] = None,
    ) -> RoutineResult:
        """
        Push the items of a recorded run into the notebook again.

        Raises:
            RunNotFound: if no run has that id
            NoItemsToSync: if the run lists no items
            ResyncRejected: if the run already synced successfully
        """
        token = self._acquire()
        if token is None:
            logger.warning("Routine already running, rejecting resync")
            return RoutineResult(status="skipped", message=ALREADY_RUNNING)

        close = self.close_on_finish if close_on_finish is None else close_on_finish
        client: Optional[NotebookClient] = None
        try:
            entry = self.run_log.get(log_id)
            if entry is None:
                raise RunNotFound(f"Run not found: {log_id}")
            if entry.sync_status == "success":
                raise ResyncRejected(f"Run {log_id} is already synced")
            if not entry.details:
                raise NoItemsToSync(f"Run {log_id} has no items to sync")

            items = [
                ScrapedItem(title=d.title, url=d.url, author="", source_platform=d.source)
                for d in entry.details
            ]

            # The log keeps no transcripts, so they are fetched again
            config = self.config_store.read()
            items = await self._enrich(items, config, on_progress)
            if not items:
                self.run_log.update_by_id(log_id, sync_status="failed", sync_error=NO_ELIGIBLE_CONTENT)
                notify(on_progress, NO_ELIGIBLE_CONTENT)
                return RoutineResult(status="failed", message=NO_ELIGIBLE_CONTENT, error=NO_ELIGIBLE_CONTENT)

            details = [item.to_detail() for item in items]
            await self.close_open_client()
            client = self.client_factory(config)
            notify(on_progress, f"Resyncing {len(items)} items from run {log_id}...")
            try:
                notebook_url = await client.sync(items, on_progress=on_progress)
            except Exception as e:
                logger.exception(f"Resync failed for run {log_id}")
                self.run_log.update_by_id(log_id, sync_status="failed", sync_error=str(e))
                return RoutineResult(
                    status="failed", message=f"Sync failed: {e}", scraped_items=details, error=str(e)
                )

            self.run_log.update_by_id(log_id, sync_status="success", sync_error=None, notebook_url=notebook_url)
            message = f"Successfully synced {len(items)} items."
            notify(on_progress, message)
            return RoutineResult(
                status="success", message=message, scraped_items=details, notebook_url=notebook_url
            )
        finally:
            try:
                await self._finish_client(client, close)
            finally:
                self._release(token)


@lru_cache
def get_routine() -> DailyRoutine:
    """Process-wide routine instance."""
    return DailyRoutine()
