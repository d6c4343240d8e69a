"""
Enrichment stage for platforms whose items need supplementary content.

Two passes: enrich_all() fetches content for every applicable item (and
backfills registry metadata as a side effect, even for items that end up
without content); filter_eligible() then drops items that still lack it.
"""

import asyncio
import logging
from typing import Optional, Sequence

from digest.config import get_settings
from digest.progress import ProgressCallback, notify
from digest.registry import AppConfig, ConfigStore, backfill_source_metadata
from digest.scrapers import BilibiliTranscriptEnricher, ContentEnricher, EnrichedContent, ScrapedItem

logger = logging.getLogger(__name__)


class EnrichmentStage:
    """
    Attaches transcripts to items from enrichment-required platforms.

    Usage:
        stage = EnrichmentStage()
        await stage.enrich_all(items, config)
        eligible = stage.filter_eligible(items)
    """

    def __init__(
        self,
        enrichers: Optional[Sequence[ContentEnricher]] = None,
        config_store: Optional[ConfigStore] = None,
        concurrency: Optional[int] = None,
    ):
        settings = get_settings()
        if enrichers is None:
            enrichers = [BilibiliTranscriptEnricher()]
        self.enrichers = {e.platform: e for e in enrichers}
        self.config_store = config_store or ConfigStore()
        self.concurrency = max(1, concurrency or settings.enrichment_concurrency)

    def requires_enrichment(self, item: ScrapedItem) -> bool:
        return item.source_platform in self.enrichers

    def is_eligible(self, item: ScrapedItem) -> bool:
        """An item can be synced if its platform needs no enrichment or it has content."""
        if not self.requires_enrichment(item):
            return True
        return bool(item.transcript and item.transcript.strip())

    def filter_eligible(self, items: Sequence[ScrapedItem]) -> list[ScrapedItem]:
        eligible = []
        for item in items:
            if self.is_eligible(item):
                eligible.append(item)
            else:
                logger.info(f"[{item.source_platform}] Dropping {item.title} ({item.url}): no transcript")
        return eligible

    @staticmethod
    def _attach(item: ScrapedItem, content: EnrichedContent) -> None:
        if content.description is not None:
            item.description = content.description
        if content.transcript and content.transcript.strip():
            item.transcript = content.transcript
            item.formatted_content = content.formatted_content
            logger.info(f"[{item.source_platform}] Transcript ready for {item.title}")
        else:
            logger.warning(f"[{item.source_platform}] No transcript found for {item.title}")

    async def _enrich_one(
        self,
        enricher: ContentEnricher,
        item: ScrapedItem,
        credential: Optional[str],
        semaphore: asyncio.Semaphore,
    ) -> Optional[EnrichedContent]:
        async with semaphore:
            try:
                return await asyncio.to_thread(enricher.enrich, item, credential)
            except Exception:
                logger.exception(f"[{item.source_platform}] Enrichment failed for {item.title} ({item.url})")
                return None

    async def enrich_all(
        self,
        items: Sequence[ScrapedItem],
        config: AppConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Fetch supplementary content for every applicable item, in place.

        Per-item failures leave the item without content. A platform whose
        enricher needs a credential that is not configured is skipped
        entirely, which makes all of its items ineligible.
        """
        config_changed = False

        for platform, enricher in self.enrichers.items():
            targets = [item for item in items if item.source_platform == platform]
            if not targets:
                continue

            credential = config.platform_credential
            if enricher.requires_credential and not credential:
                logger.warning(f"No {platform} credential configured, skipping transcript extraction")
                notify(on_progress, f"Warning: No {platform} credential configured")
                continue

            notify(on_progress, f"Extracting transcripts for {len(targets)} {platform} videos...")
            semaphore = asyncio.Semaphore(self.concurrency)
            results = await asyncio.gather(
                *(self._enrich_one(enricher, item, credential, semaphore) for item in targets)
            )

            for item, content in zip(targets, results):
                if content is None:
                    logger.warning(f"[{platform}] No content for {item.title} ({item.url})")
                    continue
                self._attach(item, content)
                config_changed |= backfill_source_metadata(
                    config,
                    platform,
                    [content.author_id, item.author_id],
                    name=content.author_name,
                    avatar=content.author_avatar,
                )

        if config_changed:
            self.config_store.write(config)
            logger.info("Config updated with source info")
