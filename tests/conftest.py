"""Shared fixtures: isolated data directory, stores, fake scrapers and a fake notebook driver."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

from digest.config import get_settings
from digest.history import HistoryStore
from digest.notebook.client import NotebookClient
from digest.notebook.driver import NotebookDriver
from digest.notebook.sessions import SessionManager
from digest.pipeline.orchestrator import get_routine
from digest.registry import AppConfig, ConfigStore, PlatformConfig, SourceItem
from digest.run_log import RunLogStore
from digest.scrapers.base import ContentEnricher, EnrichedContent, PlatformScraper, ScrapedItem


def _make_item(
    url: str,
    platform: str = "youtube",
    title: Optional[str] = None,
    author: str = "Creator",
    **kwargs,
) -> ScrapedItem:
    """Helper to create a ScrapedItem with sensible defaults."""
    return ScrapedItem(
        title=title or f"Title for {url}",
        url=url,
        author=author,
        source_platform=platform,
        published_at=kwargs.pop("published_at", datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)),
        **kwargs,
    )


def _make_config(
    youtube: tuple[str, ...] = ("@alpha",),
    bilibili: tuple[str, ...] = ("1001",),
    feed_urls: tuple[str, ...] = (),
    credential: Optional[str] = "sessdata-cookie-value",
) -> AppConfig:
    """Helper to create a v2 registry."""
    return AppConfig(
        platforms={
            "youtube": PlatformConfig(sources=[SourceItem(id=i) for i in youtube]),
            "bilibili": PlatformConfig(sources=[SourceItem(id=i) for i in bilibili]),
        },
        feed_urls=list(feed_urls),
        platform_credential=credential,
    )


class FakeScraper(PlatformScraper):
    """Returns canned items (or raises) and records what it was asked for."""

    def __init__(self, platform: str, items=(), error: Optional[Exception] = None, display_name: str = ""):
        self.platform = platform
        self.display_name = display_name or platform.capitalize()
        self.items = list(items)
        self.error = error
        self.calls: list[list[str]] = []

    def scrape(self, source_ids):
        self.calls.append(list(source_ids))
        if self.error:
            raise self.error
        return list(self.items)


class FakeEnricher(ContentEnricher):
    """Returns content per url; missing urls yield None, error urls raise."""

    def __init__(
        self,
        contents: Optional[dict] = None,
        platform: str = "bilibili",
        requires_credential: bool = True,
        errors: tuple[str, ...] = (),
    ):
        self.platform = platform
        self.requires_credential = requires_credential
        self.contents = contents or {}
        self.errors = set(errors)
        self.calls: list[tuple[str, Optional[str]]] = []

    def enrich(self, item, credential=None):
        self.calls.append((item.url, credential))
        if item.url in self.errors:
            raise RuntimeError(f"subtitle API failed for {item.url}")
        return self.contents.get(item.url)


class FakeDriver(NotebookDriver):
    """In-memory notebook UI recording every primitive call."""

    def __init__(
        self,
        notebooks: tuple[str, ...] = (),
        needs_login: bool = False,
        query_ready_after: int = 0,
        fail_on: Optional[dict] = None,
        rename_found: bool = True,
    ):
        self.notebooks = list(notebooks)
        self._needs_login = needs_login
        self.query_ready_after = query_ready_after
        self.fail_on = fail_on or {}
        self.rename_found = rename_found
        self.calls: list[tuple] = []
        self.opened: Optional[str] = None
        self.closed = False
        self.query_checks = 0

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        error = self.fail_on.get(name)
        if error is None:
            return
        if callable(error) and not isinstance(error, Exception):
            error = error(*args)
        if error:
            raise error

    def called(self, name: str) -> list[tuple]:
        return [c[1:] for c in self.calls if c[0] == name]

    async def launch(self, profile_dir: Path, browser_path: str = "", headless: bool = False):
        self._record("launch", profile_dir, browser_path, headless)

    async def open_home(self, url: str):
        self._record("open_home", url)

    async def needs_login(self) -> bool:
        return self._needs_login

    async def list_notebooks(self):
        self._record("list_notebooks")
        return list(self.notebooks)

    async def open_notebook(self, title: str):
        self._record("open_notebook", title)
        self.opened = title

    async def create_notebook(self, name: str):
        self._record("create_notebook", name)
        self.notebooks.append(name)
        self.opened = name

    async def current_url(self) -> str:
        return f"https://notebook.test/{self.opened}"

    async def add_link_source(self, url: str):
        self._record("add_link_source", url)

    async def add_text_source(self, content: str):
        self._record("add_text_source", content)

    async def add_web_sources(self, urls):
        self._record("add_web_sources", list(urls))

    async def rename_source(self, match_texts, label: str) -> bool:
        self._record("rename_source", list(match_texts), label)
        return self.rename_found

    async def query_ready(self) -> bool:
        self.query_checks += 1
        return self.query_checks > self.query_ready_after

    async def submit_query(self, text: str):
        self._record("submit_query", text)

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every default path at a temp dir and make notebook waits instant."""
    monkeypatch.setenv("DIGEST_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("DIGEST_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("DIGEST_HISTORY_PATH", str(tmp_path / "history.json"))
    monkeypatch.setenv("DIGEST_RUN_LOG_PATH", str(tmp_path / "logs.json"))
    monkeypatch.setenv("DIGEST_SESSIONS_DIR", str(tmp_path / ".sessions"))
    monkeypatch.setenv("DIGEST_PROCESSING_WAIT_SECONDS", "0")
    monkeypatch.setenv("DIGEST_QUERY_POLL_INTERVAL", "0")
    monkeypatch.setenv("DIGEST_QUERY_READY_TIMEOUT", "0")
    get_settings.cache_clear()
    get_routine.cache_clear()
    yield
    get_settings.cache_clear()
    get_routine.cache_clear()


@pytest.fixture
def config_store(tmp_path) -> ConfigStore:
    return ConfigStore(tmp_path / "config.json")


@pytest.fixture
def history_store(tmp_path) -> HistoryStore:
    return HistoryStore(tmp_path / "history.json")


@pytest.fixture
def run_log_store(tmp_path) -> RunLogStore:
    return RunLogStore(tmp_path / "logs.json")


@pytest.fixture
def session_manager(tmp_path) -> SessionManager:
    return SessionManager(tmp_path / ".sessions")


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def notebook_client(fake_driver, session_manager) -> NotebookClient:
    """NotebookClient wired to the fake driver with instant waits."""
    return NotebookClient(
        driver=fake_driver,
        sessions=session_manager,
        processing_wait_seconds=0,
        query_ready_timeout=0,
        query_poll_interval=0,
        summary_prompt="Summarize",
    )
