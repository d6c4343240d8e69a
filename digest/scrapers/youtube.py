"""
YouTube channel scraper.

Uses yt-dlp for upload enumeration (no API key needed). Sources are channel
handles (``name`` or ``@name``), channel ids (``UC...``) or channel URLs.
"""

import re
import json
import subprocess
import logging
from datetime import datetime, timezone
from typing import Optional

import requests

from digest.config import get_settings
from digest.scrapers.base import PlatformScraper, ScrapedItem

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
AVATAR_PATTERN = re.compile(r"https://yt3\.googleusercontent\.com/[^\"]+")


class YouTubeScraper(PlatformScraper):
    """
    Finds the newest uploads of followed YouTube channels.

    Each item's ``author_id`` is the source id exactly as configured, so
    scrape results can be matched back to registry entries.
    """

    platform = "youtube"
    display_name = "YouTube"

    def __init__(self, yt_dlp_path: Optional[str] = None, videos_per_channel: Optional[int] = None):
        """
        Initialize the scraper.

        Args:
            yt_dlp_path: Path to yt-dlp executable (or from settings)
            videos_per_channel: Newest uploads to take per channel (or from settings)
        """
        settings = get_settings()
        self.yt_dlp_path = yt_dlp_path or settings.yt_dlp_path
        self.videos_per_channel = videos_per_channel or settings.youtube_videos_per_channel
        self._available: Optional[bool] = None
        self._avatar_cache: dict[str, Optional[str]] = {}

    def _check_yt_dlp(self) -> bool:
        """Check if yt-dlp is installed."""
        if self._available is None:
            try:
                result = subprocess.run(
                    [self.yt_dlp_path, "--version"],
                    capture_output=True,
                    text=True,
                )
                self._available = result.returncode == 0
            except FileNotFoundError:
                self._available = False
        return self._available

    @staticmethod
    def channel_url(source_id: str) -> str:
        """Channel page URL for a handle, channel id or URL."""
        source_id = source_id.strip()
        if source_id.startswith("http"):
            return source_id.rstrip("/").removesuffix("/videos")
        if source_id.startswith("UC") and len(source_id) == 24:
            return f"https://www.youtube.com/channel/{source_id}"
        handle = source_id if source_id.startswith("@") else f"@{source_id}"
        return f"https://www.youtube.com/{handle}"

    def _get_video_list(self, url: str) -> list[dict]:
        """Get the newest uploads from a channel using yt-dlp flat playlist."""
        cmd = [
            self.yt_dlp_path,
            "--dump-json",
            "--flat-playlist",
            "--playlist-end", str(self.videos_per_channel),
            "--no-warnings",
            url,
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=120)
            if result.returncode != 0:
                logger.error(f"yt-dlp error for {url}: {result.stderr[:200]}")
                return []

            videos = []
            for line in result.stdout.strip().split("\n"):
                if line:
                    try:
                        videos.append(json.loads(line))
                    except json.JSONDecodeError:
                        continue
            return videos

        except subprocess.TimeoutExpired:
            logger.error(f"yt-dlp timed out for {url}")
            return []

    def _fetch_avatar(self, channel_url: str) -> Optional[str]:
        """Best-effort channel avatar lookup from the channel page."""
        if channel_url in self._avatar_cache:
            return self._avatar_cache[channel_url]

        avatar = None
        try:
            response = requests.get(
                channel_url,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept-Language": "en-US,en",
                    "Cookie": "CONSENT=YES+",
                },
                timeout=15,
            )
            if response.status_code == 200:
                match = AVATAR_PATTERN.search(response.text)
                avatar = match.group(0) if match else None
        except requests.RequestException as e:
            logger.debug(f"Avatar lookup failed for {channel_url}: {e}")

        self._avatar_cache[channel_url] = avatar
        return avatar

    @staticmethod
    def _published_at(video: dict) -> datetime:
        timestamp = video.get("timestamp")
        if timestamp:
            return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)

        upload_date = video.get("upload_date")
        if upload_date and len(upload_date) == 8:
            try:
                return datetime.strptime(upload_date, "%Y%m%d").replace(tzinfo=timezone.utc)
            except ValueError:
                pass
        return datetime.now(timezone.utc)

    def _extract_item(self, video: dict, source_id: str, avatar: Optional[str]) -> Optional[ScrapedItem]:
        video_id = video.get("id") or video.get("url", "").split("=")[-1]
        if not video_id:
            return None

        return ScrapedItem(
            title=video.get("title") or "Unknown Title",
            url=f"https://www.youtube.com/watch?v={video_id}",
            author=(
                video.get("channel")
                or video.get("playlist_uploader")
                or video.get("uploader")
                or source_id
            ),
            author_id=source_id,
            author_avatar=avatar,
            published_at=self._published_at(video),
            source_platform=self.platform,
        )

    def scrape(self, source_ids: list[str]) -> list[ScrapedItem]:
        """
        Scrape the newest uploads of each channel.

        Args:
            source_ids: Enabled channel identifiers

        Returns:
            ScrapedItems in source order

        Raises:
            RuntimeError: if yt-dlp is not installed
        """
        if not self._check_yt_dlp():
            raise RuntimeError("yt-dlp not found. Install with: pip install yt-dlp")

        results: list[ScrapedItem] = []
        for source_id in source_ids:
            url = self.channel_url(source_id)
            videos = self._get_video_list(f"{url}/videos")
            if not videos:
                logger.warning(f"[YouTube] No uploads found for {source_id}")
                continue

            avatar = self._fetch_avatar(url)
            for video in videos:
                item = self._extract_item(video, source_id, avatar)
                if item:
                    results.append(item)
                    logger.info(f"[YouTube] {item.author}: {item.title}")

        return results
