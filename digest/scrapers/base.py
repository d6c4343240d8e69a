"""
Scraper and enricher contracts shared by every platform.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


@dataclass
class ScrapedItem:
    """One piece of content discovered by a scraper."""

    title: str
    url: str  # Canonical URL, the dedupe key
    author: str
    source_platform: str  # "youtube" | "bilibili" | "rss"
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    author_id: Optional[str] = None
    author_avatar: Optional[str] = None

    # Filled in by enrichment
    transcript: Optional[str] = None
    description: Optional[str] = None
    formatted_content: Optional[str] = None

    def to_detail(self) -> dict:
        """Summary used in run logs and API responses."""
        return {"title": self.title, "url": self.url, "source": self.source_platform}


@dataclass
class EnrichedContent:
    """Supplementary content fetched for a single item."""

    transcript: Optional[str] = None
    description: Optional[str] = None
    formatted_content: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    author_avatar: Optional[str] = None


class PlatformScraper(ABC):
    """
    Fetches recent items for a list of source identifiers.

    Implementations handle per-source failures themselves (log and skip) and
    return whatever they managed to collect.
    """

    platform: str
    display_name: str

    @abstractmethod
    def scrape(self, source_ids: list[str]) -> list[ScrapedItem]:
        ...

    @staticmethod
    def is_recent(published_at: datetime, hours: int = 24) -> bool:
        """True if published within the last ``hours`` hours."""
        if published_at.tzinfo is None:
            published_at = published_at.replace(tzinfo=timezone.utc)
        return published_at > datetime.now(timezone.utc) - timedelta(hours=hours)


class ContentEnricher(ABC):
    """Fetches mandatory supplementary content (e.g. a transcript) for one item."""

    platform: str
    requires_credential: bool = False

    @abstractmethod
    def enrich(self, item: ScrapedItem, credential: Optional[str] = None) -> Optional[EnrichedContent]:
        """Return the content for ``item``, or None if it is unavailable."""
        ...
