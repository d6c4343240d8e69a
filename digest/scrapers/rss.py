"""
RSS/Atom feed scraper.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Optional

import feedparser
import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from digest.config import get_settings
from digest.scrapers.base import PlatformScraper, ScrapedItem

logger = logging.getLogger(__name__)


class RSSScraper(PlatformScraper):
    """
    Collects recent entries from a list of feed URLs.

    Entries inside the recency window are returned; a feed with nothing
    recent contributes its single latest entry instead.
    """

    platform = "rss"
    display_name = "RSS"

    def __init__(self, window_hours: Optional[int] = None, session: Optional[requests.Session] = None):
        settings = get_settings()
        self.window_hours = window_hours or settings.feed_window_hours
        self.session = session or requests.Session()

    @retry(
        retry=retry_if_exception_type(requests.RequestException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    def _fetch(self, url: str) -> str:
        response = self.session.get(url, timeout=30)
        response.raise_for_status()
        return response.text

    @staticmethod
    def _entry_date(entry) -> datetime:
        parsed = entry.get("published_parsed") or entry.get("updated_parsed")
        if parsed:
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
        return datetime.now(timezone.utc)

    def _to_item(self, entry, feed_title: str) -> ScrapedItem:
        return ScrapedItem(
            title=entry.get("title") or "No Title",
            url=entry.get("link"),
            author=feed_title,
            published_at=self._entry_date(entry),
            source_platform=self.platform,
        )

    def parse_feed(self, text: str) -> list[ScrapedItem]:
        """Turn a feed document into items, applying the recency window."""
        feed = feedparser.parse(text)
        feed_title = feed.feed.get("title") or "Unknown Author"
        entries = [e for e in feed.entries if e.get("link")]

        recent = [
            self._to_item(e, feed_title)
            for e in entries
            if self.is_recent(self._entry_date(e), self.window_hours)
        ]
        if recent:
            return recent
        if entries:
            return [self._to_item(entries[0], feed_title)]
        return []

    def scrape(self, source_ids: list[str]) -> list[ScrapedItem]:
        """
        Scrape every feed URL; a failing feed is logged and skipped.

        Args:
            source_ids: Feed URLs
        """
        results: list[ScrapedItem] = []
        for url in source_ids:
            try:
                items = self.parse_feed(self._fetch(url))
            except requests.RequestException as e:
                logger.error(f"[RSS] Fetch failed for {url}: {e}")
                continue

            logger.info(f"[RSS] {len(items)} items from {url}")
            results.extend(items)

        return results
