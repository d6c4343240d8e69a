"""
Scrape coordinator.

Fans out to every platform scraper that has enabled sources, merges the
results in platform order, backfills registry display metadata, and drops
anything already present in the history.
"""

import asyncio
import logging
from typing import Optional, Sequence

from digest.history import HistoryStore
from digest.progress import ProgressCallback, notify
from digest.registry import AppConfig, ConfigStore, backfill_source_metadata
from digest.scrapers import BilibiliScraper, PlatformScraper, RSSScraper, ScrapedItem, YouTubeScraper

logger = logging.getLogger(__name__)


class ScrapeCoordinator:
    """
    Runs all platform scrapes for one pipeline run.

    Usage:
        coordinator = ScrapeCoordinator()
        new_items = await coordinator.scrape_all(config, on_progress=print)
    """

    def __init__(
        self,
        scrapers: Optional[Sequence[PlatformScraper]] = None,
        feed_scraper: Optional[PlatformScraper] = None,
        history: Optional[HistoryStore] = None,
        config_store: Optional[ConfigStore] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            scrapers: Id-based platform scrapers, in merge order
            feed_scraper: Scraper for the registry's feed URL list
            history: HistoryStore used for deduplication
            config_store: Where backfilled registry metadata is persisted
        """
        self.scrapers = list(scrapers) if scrapers is not None else [YouTubeScraper(), BilibiliScraper()]
        self.feed_scraper = feed_scraper or RSSScraper()
        self.history = history or HistoryStore()
        self.config_store = config_store or ConfigStore()

    async def _run_scraper(self, scraper: PlatformScraper, source_ids: list[str]) -> list[ScrapedItem]:
        """Run one blocking scraper in a worker thread; failures yield no items."""
        try:
            items = await asyncio.to_thread(scraper.scrape, source_ids)
        except Exception:
            logger.exception(f"{scraper.display_name} scrape error ({len(source_ids)} sources)")
            return []

        logger.info(f"{scraper.display_name}: {len(items)} items")
        return [item for item in items if item.url]

    def _backfill(self, config: AppConfig, items: list[ScrapedItem]) -> bool:
        changed = False
        for item in items:
            changed |= backfill_source_metadata(
                config,
                item.source_platform,
                [item.author_id, item.author],
                name=item.author,
                avatar=item.author_avatar,
            )
        return changed

    async def scrape_all(
        self, config: AppConfig, on_progress: Optional[ProgressCallback] = None
    ) -> list[ScrapedItem]:
        """
        Scrape all enabled sources and return the items not seen before.

        Platform scrapes run concurrently; the merged list keeps platform
        order (then each scraper's own order), never completion order.

        Args:
            config: Current registry
            on_progress: Optional progress sink

        Returns:
            New ScrapedItems
        """
        jobs = []
        for scraper in self.scrapers:
            source_ids = config.enabled_sources(scraper.platform)
            if not source_ids:
                continue
            notify(on_progress, f"Starting {scraper.display_name} scrape...")
            jobs.append(self._run_scraper(scraper, source_ids))

        if config.feed_urls:
            notify(on_progress, f"Starting {self.feed_scraper.display_name} scrape...")
            jobs.append(self._run_scraper(self.feed_scraper, list(config.feed_urls)))

        batches = await asyncio.gather(*jobs)
        merged = [item for batch in batches for item in batch]

        if self._backfill(config, merged):
            self.config_store.write(config)
            logger.info("Config updated with source info")

        new_items = self.history.filter_new(merged)
        logger.info(f"Scraped {len(merged)} items, {len(new_items)} new")
        return new_items
