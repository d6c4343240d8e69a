"""Tests for the daily routine orchestrator."""

import asyncio

import pytest

from digest.notebook.client import NotebookClient
from digest.pipeline.coordinator import ScrapeCoordinator
from digest.pipeline.enrichment import EnrichmentStage
from digest.pipeline.orchestrator import (
    DailyRoutine,
    NoItemsToSync,
    ResyncRejected,
    RunNotFound,
)
from digest.run_log import RunLogEntry
from digest.scrapers.base import EnrichedContent
from tests.conftest import FakeDriver, FakeEnricher, FakeScraper, _make_config, _make_item


class BlockingCoordinator:
    """Coordinator stand-in that waits until released."""

    def __init__(self, items=()):
        self.items = list(items)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def scrape_all(self, config, on_progress=None):
        self.started.set()
        await self.release.wait()
        return list(self.items)


class ExplodingCoordinator:
    async def scrape_all(self, config, on_progress=None):
        raise RuntimeError("registry unreadable")


@pytest.fixture
def stores(config_store, history_store, run_log_store):
    config_store.write(_make_config())
    return config_store, history_store, run_log_store


def _routine(stores, session_manager, scrapers=(), enricher=None, driver=None, coordinator=None, **kwargs):
    config_store, history_store, run_log_store = stores
    driver = driver or FakeDriver()
    clients = []

    def client_factory(config):
        client = NotebookClient(
            driver=driver,
            sessions=session_manager,
            processing_wait_seconds=0,
            query_ready_timeout=0,
            query_poll_interval=0,
        )
        clients.append(client)
        return client

    routine = DailyRoutine(
        coordinator=coordinator
        or ScrapeCoordinator(
            scrapers=list(scrapers),
            feed_scraper=FakeScraper("rss", display_name="RSS"),
            history=history_store,
            config_store=config_store,
        ),
        enrichment=EnrichmentStage(enrichers=[enricher or FakeEnricher()], config_store=config_store),
        config_store=config_store,
        history=history_store,
        run_log=run_log_store,
        client_factory=client_factory,
        **kwargs,
    )
    routine.clients = clients
    return routine


class TestRunOutcomes:
    """Tests for each terminal outcome of a run."""

    @pytest.mark.asyncio
    async def test_success(self, stores, session_manager):
        _, history_store, run_log_store = stores
        driver = FakeDriver()
        routine = _routine(
            stores, session_manager, scrapers=[FakeScraper("youtube", [_make_item("y1"), _make_item("y2")])], driver=driver
        )

        result = await routine.run()

        assert result.status == "success"
        assert result.message == "Successfully synced 2 items."
        assert [i["url"] for i in result.scraped_items] == ["y1", "y2"]
        assert result.notebook_url.startswith("https://notebook.test/daily_")
        entry = run_log_store.read_all()[0]
        assert entry.status == "success"
        assert entry.sync_status == "success"
        assert entry.notebook_url == result.notebook_url
        assert history_store.read() == ["y1", "y2"]
        assert driver.closed
        assert not routine.is_running

    @pytest.mark.asyncio
    async def test_no_new_content(self, stores, session_manager):
        _, history_store, run_log_store = stores
        history_store.append(["y1"])
        routine = _routine(stores, session_manager, scrapers=[FakeScraper("youtube", [_make_item("y1")])])

        result = await routine.run()

        assert result.status == "no_content"
        assert result.message == "No new content found."
        assert result.scraped_items == []
        entry = run_log_store.read_all()[0]
        assert entry.status == "none"
        assert entry.sync_status == "pending"
        assert routine.clients == []

    @pytest.mark.asyncio
    async def test_nothing_eligible_logs_original_items(self, stores, session_manager):
        _, history_store, run_log_store = stores
        routine = _routine(
            stores,
            session_manager,
            scrapers=[FakeScraper("bilibili", [_make_item("b1", platform="bilibili")])],
            enricher=FakeEnricher({"b1": EnrichedContent(transcript="")}),
        )

        result = await routine.run()

        assert result.status == "no_content"
        assert result.message == "No transcript-available content found to sync."
        assert [i["url"] for i in result.scraped_items] == ["b1"]
        entry = run_log_store.read_all()[0]
        assert entry.status == "none"
        assert [d.url for d in entry.details] == ["b1"]
        assert entry.sync_status == "pending"
        assert history_store.read() == []

    @pytest.mark.asyncio
    async def test_only_eligible_items_synced_and_recorded(self, stores, session_manager):
        _, history_store, run_log_store = stores
        driver = FakeDriver()
        routine = _routine(
            stores,
            session_manager,
            scrapers=[
                FakeScraper("youtube", [_make_item("y1")]),
                FakeScraper("bilibili", [_make_item("b1", platform="bilibili"), _make_item("b2", platform="bilibili")]),
            ],
            enricher=FakeEnricher({"b2": EnrichedContent(transcript="words", formatted_content="# b2")}),
            driver=driver,
        )

        result = await routine.run()

        assert [i["url"] for i in result.scraped_items] == ["y1", "b2"]
        assert history_store.read() == ["y1", "b2"]
        entry = run_log_store.read_all()[0]
        assert entry.message == "Scraped 3 items (2 valid). Syncing..."
        assert entry.item_count == 2
        assert driver.called("add_text_source") == [("# b2",)]

    @pytest.mark.asyncio
    async def test_scrape_phase_failure(self, stores, session_manager):
        _, _, run_log_store = stores
        routine = _routine(stores, session_manager, coordinator=ExplodingCoordinator())

        result = await routine.run()

        assert result.status == "failed"
        assert "registry unreadable" in result.message
        assert result.error == "registry unreadable"
        assert run_log_store.read_all() == []
        assert not routine.is_running

    @pytest.mark.asyncio
    async def test_unreadable_config_is_fatal(self, stores, session_manager):
        config_store, _, _ = stores
        config_store.path.write_text("{oops", encoding="utf-8")
        routine = _routine(stores, session_manager, scrapers=[FakeScraper("youtube", [_make_item("y1")])])

        result = await routine.run()

        assert result.status == "failed"
        assert result.message.startswith("Scrape phase failed:")


class TestSyncFailure:
    """Tests for sync failures after history was committed."""

    @pytest.mark.asyncio
    async def test_session_required_keeps_history(self, stores, session_manager):
        _, history_store, run_log_store = stores
        driver = FakeDriver(needs_login=True)
        routine = _routine(stores, session_manager, scrapers=[FakeScraper("youtube", [_make_item("y1")])], driver=driver)

        result = await routine.run()

        assert result.status == "failed"
        assert result.message.startswith("Sync failed:")
        assert [i["url"] for i in result.scraped_items] == ["y1"]
        entry = run_log_store.read_all()[0]
        assert entry.sync_status == "failed"
        assert "log in" in entry.sync_error
        assert history_store.read() == ["y1"]
        assert driver.closed

    @pytest.mark.asyncio
    async def test_next_run_does_not_redeliver(self, stores, session_manager):
        scraper = FakeScraper("youtube", [_make_item("y1")])
        routine = _routine(stores, session_manager, scrapers=[scraper], driver=FakeDriver(needs_login=True))

        first = await routine.run()
        second = await routine.run()

        assert first.status == "failed"
        assert second.status == "no_content"


class TestSingleFlight:
    """Tests for the at-most-one-run guard."""

    @pytest.mark.asyncio
    async def test_concurrent_run_skipped_without_side_effects(self, stores, session_manager):
        config_store, history_store, run_log_store = stores
        coordinator = BlockingCoordinator([_make_item("y1")])
        routine = _routine(stores, session_manager, coordinator=coordinator)
        config_before = config_store.path.read_text()

        first = asyncio.create_task(routine.run())
        await coordinator.started.wait()
        assert routine.is_running

        second = await routine.run()
        assert second.status == "skipped"
        assert second.message == "Routine is already running"
        assert run_log_store.read_all() == []
        assert history_store.read() == []
        assert config_store.path.read_text() == config_before

        coordinator.release.set()
        result = await first
        assert result.status == "success"
        assert not routine.is_running

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self, stores, session_manager):
        routine = _routine(stores, session_manager, coordinator=ExplodingCoordinator())

        await routine.run()

        assert not routine.is_running
        assert (await routine.run()).status == "failed"

    def test_reset_clears_flag(self, stores, session_manager):
        routine = _routine(stores, session_manager)
        assert routine._acquire()
        assert routine.is_running

        routine.reset()

        assert not routine.is_running

    @pytest.mark.asyncio
    async def test_reset_during_run_keeps_its_result(self, stores, session_manager):
        coordinator = BlockingCoordinator([_make_item("y1")])
        routine = _routine(stores, session_manager, coordinator=coordinator)

        first = asyncio.create_task(routine.run())
        await coordinator.started.wait()
        routine.reset()
        assert not routine.is_running

        coordinator.release.set()
        result = await first

        assert result.status == "success"
        assert not routine.is_running

    @pytest.mark.asyncio
    async def test_stale_run_does_not_release_newer_flag(self, stores, session_manager):
        stale = BlockingCoordinator([_make_item("y1")])
        routine = _routine(stores, session_manager, coordinator=stale)

        first = asyncio.create_task(routine.run())
        await stale.started.wait()
        routine.reset()

        token = routine._acquire()
        stale.release.set()
        await first

        assert routine.is_running
        routine._release(token)
        assert not routine.is_running


class TestCloseOnFinish:
    """Tests for caller-controlled session release."""

    @pytest.mark.asyncio
    async def test_keep_open_leaves_client(self, stores, session_manager):
        driver = FakeDriver()
        routine = _routine(stores, session_manager, scrapers=[FakeScraper("youtube", [_make_item("y1")])], driver=driver)

        await routine.run(close_on_finish=False)

        assert not driver.closed
        assert routine.open_client is routine.clients[0]

        await routine.close_open_client()
        assert driver.closed
        assert routine.open_client is None


class TestResync:
    """Tests for pushing a recorded run again."""

    @pytest.mark.asyncio
    async def test_resync_failed_run(self, stores, session_manager):
        _, _, run_log_store = stores
        run_log_store.append(
            RunLogEntry(
                id="run1",
                status="success",
                message="m",
                sync_status="failed",
                sync_error="boom",
                details=[{"title": "T", "url": "https://yt/1", "source": "youtube"}],
            )
        )
        driver = FakeDriver()
        routine = _routine(stores, session_manager, driver=driver)

        result = await routine.resync("run1")

        assert result.status == "success"
        entry = run_log_store.get("run1")
        assert entry.sync_status == "success"
        assert entry.sync_error is None
        assert entry.notebook_url == result.notebook_url
        assert driver.called("add_link_source") == [("https://yt/1",)]

    @pytest.mark.asyncio
    async def test_unknown_run(self, stores, session_manager):
        routine = _routine(stores, session_manager)
        with pytest.raises(RunNotFound):
            await routine.resync("nope")
        assert not routine.is_running

    @pytest.mark.asyncio
    async def test_already_synced_rejected(self, stores, session_manager):
        _, _, run_log_store = stores
        run_log_store.append(
            RunLogEntry(
                id="run1",
                status="success",
                message="m",
                sync_status="success",
                details=[{"title": "T", "url": "https://yt/1", "source": "youtube"}],
            )
        )
        routine = _routine(stores, session_manager)

        with pytest.raises(ResyncRejected):
            await routine.resync("run1")

    @pytest.mark.asyncio
    async def test_no_items_rejected(self, stores, session_manager):
        _, _, run_log_store = stores
        run_log_store.append(RunLogEntry(id="run1", status="none", message="m", sync_status="pending"))
        routine = _routine(stores, session_manager)

        with pytest.raises(NoItemsToSync):
            await routine.resync("run1")

    @pytest.mark.asyncio
    async def test_resync_fetches_transcripts_again(self, stores, session_manager):
        _, _, run_log_store = stores
        url = "https://www.bilibili.com/video/BV1/"
        run_log_store.append(
            RunLogEntry(
                id="run1",
                status="success",
                message="m",
                sync_status="failed",
                details=[{"title": "Bili", "url": url, "source": "bilibili"}],
            )
        )
        driver = FakeDriver()
        enricher = FakeEnricher({url: EnrichedContent(transcript="words", formatted_content="# Bili doc")})
        routine = _routine(stores, session_manager, enricher=enricher, driver=driver)

        result = await routine.resync("run1")

        assert result.status == "success"
        assert enricher.calls == [(url, "sessdata-cookie-value")]
        assert driver.called("add_text_source") == [("# Bili doc",)]
        assert run_log_store.get("run1").sync_status == "success"

    @pytest.mark.asyncio
    async def test_resync_without_transcripts_stays_failed(self, stores, session_manager):
        _, _, run_log_store = stores
        run_log_store.append(
            RunLogEntry(
                id="run1",
                status="success",
                message="m",
                sync_status="failed",
                details=[{"title": "Bili", "url": "https://www.bilibili.com/video/BV1/", "source": "bilibili"}],
            )
        )
        driver = FakeDriver()
        routine = _routine(stores, session_manager, driver=driver)

        result = await routine.resync("run1")

        assert result.status == "failed"
        assert result.message == "No transcript-available content found to sync."
        assert routine.clients == []
        assert run_log_store.get("run1").sync_status == "failed"
        assert not routine.is_running

    @pytest.mark.asyncio
    async def test_resync_with_nothing_inserted_is_failure(self, stores, session_manager):
        _, _, run_log_store = stores
        run_log_store.append(
            RunLogEntry(
                id="run1",
                status="success",
                message="m",
                sync_status="failed",
                details=[{"title": "T", "url": "https://yt/1", "source": "youtube"}],
            )
        )
        driver = FakeDriver(fail_on={"add_link_source": RuntimeError("dialog stuck")})
        routine = _routine(stores, session_manager, driver=driver)

        result = await routine.resync("run1")

        assert result.status == "failed"
        assert run_log_store.get("run1").sync_status == "failed"
        assert driver.called("submit_query") == []
