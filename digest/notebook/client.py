"""
Notebook sync client.

Pushes a run's items into the external notebook tool through a fixed,
strictly sequential protocol:

    UNINITIALIZED -> SESSION_READY -> CONTAINER_RESOLVED -> SOURCES_INSERTED
        -> SUMMARY_REQUESTED -> DONE

Any failing step moves the client to FAILED. close() is valid in every state.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Sequence

from digest.config import get_settings
from digest.notebook.driver import NotebookDriver, PlaywrightNotebookDriver
from digest.notebook.sessions import SessionManager
from digest.progress import ProgressCallback, notify
from digest.scrapers.base import ScrapedItem

logger = logging.getLogger(__name__)

SESSION_PLATFORM = "notebooklm"
LINK_PLATFORMS = ("youtube",)  # Inserted as structured links
TEXT_PLATFORMS = ("bilibili",)  # Only insertable as pasted text

InsertionKind = Literal["link", "text", "batch", "skip"]


class NotebookSessionRequired(RuntimeError):
    """The browser profile is not logged in; interactive login is needed."""


class NotebookStepError(RuntimeError):
    """A required sync step failed or was called out of order."""


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    SESSION_READY = "session_ready"
    CONTAINER_RESOLVED = "container_resolved"
    SOURCES_INSERTED = "sources_inserted"
    SUMMARY_REQUESTED = "summary_requested"
    DONE = "done"
    FAILED = "failed"


@dataclass
class InsertReport:
    """Outcome of insert_sources()."""

    inserted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def container_name(now: Optional[datetime] = None) -> str:
    """Notebook name for a day's run, e.g. daily_2026_10_19."""
    return f"daily_{(now or datetime.now()):%Y_%m_%d}"


def source_label(item: ScrapedItem) -> str:
    if not item.author:
        return item.title
    return f"{item.author[:5]}-{item.title}"


def insertion_kind(item: ScrapedItem) -> InsertionKind:
    if item.source_platform in LINK_PLATFORMS:
        return "link"
    if item.formatted_content or item.transcript:
        return "text"
    if item.source_platform in TEXT_PLATFORMS:
        return "skip"
    return "batch"


def text_document(item: ScrapedItem) -> str:
    if item.formatted_content:
        return item.formatted_content
    return (
        f"# {item.title}\n\n"
        f"## Description\n{item.description or ''}\n\n"
        f"## Transcript\n{item.transcript or ''}\n"
    )


def match_container(titles: Sequence[str], name: str) -> Optional[str]:
    """Existing notebook to reuse: exact title match first, then prefix match."""
    for title in titles:
        if title == name:
            return title
    for title in titles:
        if title.startswith(name):
            return title
    return None


class NotebookClient:
    """
    Sequences one sync session against the notebook tool.

    Usage:
        client = NotebookClient(browser_path=config.external_browser_path)
        try:
            url = await client.sync(items)
        finally:
            await client.close()
    """

    def __init__(
        self,
        driver: Optional[NotebookDriver] = None,
        sessions: Optional[SessionManager] = None,
        browser_path: str = "",
        headless: Optional[bool] = None,
        notebook_url: Optional[str] = None,
        summary_prompt: Optional[str] = None,
        processing_wait_seconds: Optional[float] = None,
        query_ready_timeout: Optional[float] = None,
        query_poll_interval: Optional[float] = None,
    ):
        settings = get_settings()
        self.driver = driver or PlaywrightNotebookDriver()
        self.sessions = sessions or SessionManager()
        self.browser_path = browser_path
        self.headless = settings.notebook_headless if headless is None else headless
        self.notebook_url = notebook_url or settings.notebook_url
        self.summary_prompt = summary_prompt or settings.summary_prompt
        self.processing_wait_seconds = (
            settings.processing_wait_seconds if processing_wait_seconds is None else processing_wait_seconds
        )
        self.query_ready_timeout = (
            settings.query_ready_timeout if query_ready_timeout is None else query_ready_timeout
        )
        self.query_poll_interval = (
            settings.query_poll_interval if query_poll_interval is None else query_poll_interval
        )

        self.state = SyncState.UNINITIALIZED
        self.container_url: Optional[str] = None

    def _require(self, expected: SyncState, step: str) -> None:
        if self.state != expected:
            raise NotebookStepError(f"Cannot {step} in state {self.state.value}")

    async def init(self) -> None:
        """
        Open the persistent browser profile and verify the session.

        Raises:
            NotebookSessionRequired: if the profile needs an interactive login
        """
        self._require(SyncState.UNINITIALIZED, "init")
        try:
            self.sessions.clear_stale_lock(SESSION_PLATFORM)
            profile_dir = self.sessions.get_session_dir(SESSION_PLATFORM)
            await self.driver.launch(profile_dir, self.browser_path, self.headless)
            await self.driver.open_home(self.notebook_url)
            if await self.driver.needs_login():
                raise NotebookSessionRequired("Notebook session required. Please log in first.")
        except Exception:
            self.state = SyncState.FAILED
            raise

        logger.info(f"[Notebook] Session ready (profile: {profile_dir})")
        self.state = SyncState.SESSION_READY

    async def resolve_container(self, name: str) -> str:
        """
        Open the notebook called ``name``, creating it only if none matches.

        Returns:
            URL of the resolved notebook
        """
        self._require(SyncState.SESSION_READY, "resolve container")
        try:
            existing = match_container(await self.driver.list_notebooks(), name)
            if existing:
                logger.info(f"[Notebook] Opening: {existing}")
                await self.driver.open_notebook(existing)
            else:
                logger.info(f"[Notebook] Creating: {name}")
                await self.driver.create_notebook(name)
            self.container_url = await self.driver.current_url()
        except Exception:
            self.state = SyncState.FAILED
            raise

        self.state = SyncState.CONTAINER_RESOLVED
        return self.container_url

    async def _rename(self, item: ScrapedItem) -> None:
        label = source_label(item)
        try:
            if not await self.driver.rename_source([item.title, item.url], label):
                logger.warning(f"[Notebook] Could not locate inserted source to rename: {item.title}")
        except Exception as e:
            logger.warning(f"[Notebook] Rename failed for {item.title}: {e}")

    async def insert_sources(
        self, items: Sequence[ScrapedItem], on_progress: Optional[ProgressCallback] = None
    ) -> InsertReport:
        """
        Insert every item, each independently; one failure never stops the rest.

        Links and text documents are inserted one by one and renamed;
        generic web items are inserted together as one URL batch.
        """
        self._require(SyncState.CONTAINER_RESOLVED, "insert sources")
        report = InsertReport()

        groups: dict[InsertionKind, list[ScrapedItem]] = {"link": [], "text": [], "batch": [], "skip": []}
        for item in items:
            groups[insertion_kind(item)].append(item)

        for item in groups["skip"]:
            logger.warning(f"[Notebook] Skipping {item.url}: no text content to insert")
            report.skipped.append(item.url)

        for kind in ("link", "text"):
            batch = groups[kind]
            for i, item in enumerate(batch, start=1):
                notify(on_progress, f"Adding {item.source_platform} source ({i}/{len(batch)}): {item.title}")
                try:
                    if kind == "link":
                        await self.driver.add_link_source(item.url)
                    else:
                        await self.driver.add_text_source(text_document(item))
                except Exception as e:
                    logger.error(f"[Notebook] Insert failed for {item.title} ({item.url}): {e}")
                    report.failed.append(item.url)
                    continue

                report.inserted.append(item.url)
                await self._rename(item)

        web_items = groups["batch"]
        if web_items:
            notify(on_progress, f"Adding {len(web_items)} web sources...")
            urls = [item.url for item in web_items]
            try:
                await self.driver.add_web_sources(urls)
                report.inserted.extend(urls)
            except Exception as e:
                logger.error(f"[Notebook] Web batch insert failed ({len(urls)} urls): {e}")
                report.failed.extend(urls)

        logger.info(
            f"[Notebook] Inserted {len(report.inserted)}, failed {len(report.failed)}, "
            f"skipped {len(report.skipped)}"
        )
        self.state = SyncState.SOURCES_INSERTED
        return report

    async def request_summary(self) -> None:
        """
        Wait (bounded) for the query box to become usable, then ask for the summary.

        Raises:
            NotebookStepError: if the query box never becomes enabled
        """
        self._require(SyncState.SOURCES_INSERTED, "request summary")
        try:
            attempts = 1
            if self.query_poll_interval > 0:
                attempts = max(1, math.ceil(self.query_ready_timeout / self.query_poll_interval))

            for _ in range(attempts):
                if await self.driver.query_ready():
                    break
                await asyncio.sleep(self.query_poll_interval)
            else:
                raise NotebookStepError("Query box remained disabled.")

            await self.driver.submit_query(self.summary_prompt)
        except Exception:
            self.state = SyncState.FAILED
            raise

        self.state = SyncState.SUMMARY_REQUESTED
        logger.info("[Notebook] Summary requested")
        self.state = SyncState.DONE

    async def sync(
        self,
        items: Sequence[ScrapedItem],
        name: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Run the whole protocol.

        Returns:
            URL of the notebook the items were pushed into

        Raises:
            NotebookStepError: if items were given but none of them was inserted
        """
        notify(on_progress, "Launching notebook session...")
        await self.init()
        url = await self.resolve_container(name or container_name())
        report = await self.insert_sources(items, on_progress)
        if items and not report.inserted:
            self.state = SyncState.FAILED
            raise NotebookStepError(
                f"No sources inserted ({len(report.failed)} failed, {len(report.skipped)} skipped)"
            )

        notify(on_progress, "Waiting for processing...")
        await asyncio.sleep(self.processing_wait_seconds)

        notify(on_progress, "Asking for summary...")
        await self.request_summary()
        return url

    async def close(self) -> None:
        """Release the browser session."""
        try:
            await self.driver.close()
        except Exception as e:
            logger.warning(f"[Notebook] Error while closing session: {e}")
