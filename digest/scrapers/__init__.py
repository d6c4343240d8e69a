"""
Platform scrapers.

Each scraper turns a list of source identifiers into recent ScrapedItems.
The Bilibili module also provides the transcript enricher.
"""

from digest.scrapers.base import ScrapedItem, EnrichedContent, PlatformScraper, ContentEnricher
from digest.scrapers.youtube import YouTubeScraper
from digest.scrapers.bilibili import BilibiliScraper, BilibiliTranscriptEnricher
from digest.scrapers.rss import RSSScraper

__all__ = [
    "ScrapedItem",
    "EnrichedContent",
    "PlatformScraper",
    "ContentEnricher",
    "YouTubeScraper",
    "BilibiliScraper",
    "BilibiliTranscriptEnricher",
    "RSSScraper",
]
