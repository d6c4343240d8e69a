"""
Bilibili creator scraper and subtitle enricher.

Discovery uses the signed (WBI) space-listing API; subtitles need the
SESSDATA session cookie, so the enricher refuses to run without it.
"""

import re
import time
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from digest.config import get_settings
from digest.scrapers.base import ContentEnricher, EnrichedContent, PlatformScraper, ScrapedItem

logger = logging.getLogger(__name__)

API_BASE = "https://api.bilibili.com"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
WBI_KEY_TTL = 30 * 60  # seconds

MIXIN_KEY_ENC_TAB = [
    46, 47, 18, 2, 53, 8, 23, 32, 15, 50, 10, 31, 58, 3, 45, 35, 27, 43, 5, 49,
    33, 9, 42, 19, 29, 28, 14, 39, 12, 38, 41, 13, 37, 48, 7, 16, 24, 55, 40,
    61, 26, 17, 0, 1, 60, 51, 30, 4, 22, 25, 54, 21, 56, 59, 6, 63, 57, 62, 11,
    36, 20, 34, 44, 52,
]
BVID_PATTERN = re.compile(r"video/(BV[A-Za-z0-9]+)")


def get_mixin_key(raw_key: str) -> str:
    """Shuffle the concatenated img/sub keys into the 32-char signing key."""
    return "".join(raw_key[i] for i in MIXIN_KEY_ENC_TAB if i < len(raw_key))[:32]


def sign_params(params: dict, img_key: str, sub_key: str, timestamp: Optional[int] = None) -> str:
    """Return the WBI-signed query string for ``params``."""
    mixin_key = get_mixin_key(img_key + sub_key)
    params = dict(params, wts=timestamp if timestamp is not None else int(time.time()))

    parts = []
    for key in sorted(params):
        value = re.sub(r"[!'()*]", "", str(params[key]))
        parts.append(f"{quote(key, safe='')}={quote(value, safe='')}")
    query = "&".join(parts)

    w_rid = hashlib.md5((query + mixin_key).encode("utf-8")).hexdigest()
    return f"{query}&w_rid={w_rid}"


def parse_duration(length: Optional[str]) -> int:
    """Convert "MM:SS" or "HH:MM:SS" to seconds (0 if unparseable)."""
    if not length:
        return 0
    try:
        parts = [int(p) for p in length.split(":")]
    except ValueError:
        return 0
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    return 0


def extract_bvid(url: str) -> Optional[str]:
    match = BVID_PATTERN.search(url)
    return match.group(1) if match else None


class BilibiliClient:
    """Thin HTTP client over the public Bilibili web API."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Referer": "https://www.bilibili.com/",
        })
        self._wbi_keys: Optional[tuple[str, str]] = None
        self._wbi_expiry: float = 0.0

    @retry(
        retry=retry_if_exception_type(requests.RequestException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    def get_json(
        self,
        url: str,
        params: Optional[dict] = None,
        credential: Optional[str] = None,
        referer: Optional[str] = None,
    ) -> dict:
        """GET a JSON document, retrying transient network failures."""
        headers = {}
        if credential:
            headers["Cookie"] = f"SESSDATA={credential}"
        if referer:
            headers["Referer"] = referer

        response = self.session.get(url, params=params, headers=headers, timeout=30)
        response.raise_for_status()
        return response.json()

    def get_wbi_keys(self) -> tuple[str, str]:
        """Signing keys, cached for WBI_KEY_TTL seconds."""
        if self._wbi_keys and time.monotonic() < self._wbi_expiry:
            return self._wbi_keys

        logger.info("[Bilibili] Fetching fresh WBI keys...")
        data = self.get_json(f"{API_BASE}/x/web-interface/nav")
        wbi_img = data["data"]["wbi_img"]
        img_key = wbi_img["img_url"].rsplit("/", 1)[-1].split(".")[0]
        sub_key = wbi_img["sub_url"].rsplit("/", 1)[-1].split(".")[0]

        self._wbi_keys = (img_key, sub_key)
        self._wbi_expiry = time.monotonic() + WBI_KEY_TTL
        return self._wbi_keys


class BilibiliScraper(PlatformScraper):
    """
    Lists recent long-form uploads of followed Bilibili creators.

    Source ids are numeric creator ids (mid).
    """

    platform = "bilibili"
    display_name = "Bilibili"

    def __init__(
        self,
        client: Optional[BilibiliClient] = None,
        page_size: Optional[int] = None,
        min_duration_seconds: Optional[int] = None,
        request_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self.client = client or BilibiliClient()
        self.page_size = page_size or settings.bilibili_page_size
        self.min_duration_seconds = (
            min_duration_seconds
            if min_duration_seconds is not None
            else settings.bilibili_min_duration_seconds
        )
        self.request_delay = (
            request_delay if request_delay is not None else settings.bilibili_request_delay
        )

    def _scan_space(self, mid: str) -> list[ScrapedItem]:
        img_key, sub_key = self.client.get_wbi_keys()
        params = {
            "mid": mid,
            "ps": self.page_size,
            "pn": 1,
            "platform": "web",
            "web_location": 1550101,
            "order": "pubdate",
        }
        query = sign_params(params, img_key, sub_key)
        data = self.client.get_json(
            f"{API_BASE}/x/space/wbi/arc/search?{query}",
            referer=f"https://space.bilibili.com/{mid}/video",
        )

        if data.get("code") != 0:
            logger.warning(f"[Bilibili] API returned code {data.get('code')} for {mid}: {data.get('message')}")
            return []

        items = []
        vlist = ((data.get("data") or {}).get("list") or {}).get("vlist") or []
        for video in vlist:
            duration = parse_duration(video.get("length"))
            if duration < self.min_duration_seconds:
                logger.debug(f"[Bilibili] Skipping short video: {video.get('title')} ({video.get('length')})")
                continue

            items.append(ScrapedItem(
                title=video.get("title") or "Untitled",
                url=f"https://www.bilibili.com/video/{video['bvid']}/",
                author=video.get("author") or mid,
                author_id=str(video.get("mid") or mid),
                published_at=datetime.fromtimestamp(int(video.get("created") or time.time()), tz=timezone.utc),
                source_platform=self.platform,
            ))
        return items

    def scrape(self, source_ids: list[str]) -> list[ScrapedItem]:
        """
        Scrape recent uploads for each creator id.

        A failing creator is logged and skipped.
        """
        results: list[ScrapedItem] = []
        for i, source_id in enumerate(source_ids):
            mid = source_id.strip()
            if i > 0 and self.request_delay:
                time.sleep(self.request_delay)

            logger.info(f"[Bilibili] Scanning space: {mid}")
            try:
                items = self._scan_space(mid)
            except (requests.RequestException, KeyError, ValueError, TypeError, AttributeError) as e:
                logger.error(f"[Bilibili] Scan failed for {mid}: {e}")
                continue

            logger.info(f"[Bilibili] Found {len(items)} eligible videos for {mid}")
            results.extend(items)

        return results


class BilibiliTranscriptEnricher(ContentEnricher):
    """Fetches subtitles (and uploader metadata) for a Bilibili video."""

    platform = "bilibili"
    requires_credential = True

    def __init__(self, client: Optional[BilibiliClient] = None):
        self.client = client or BilibiliClient()

    def _get_video_info(self, bvid: str, credential: str) -> Optional[dict]:
        data = self.client.get_json(
            f"{API_BASE}/x/web-interface/view",
            params={"bvid": bvid},
            credential=credential,
        )
        if data.get("code") != 0:
            logger.error(f"[Bilibili] Failed to get video info for {bvid}: {data.get('message')}")
            return None
        return data["data"]

    def _get_subtitle_list(self, aid: int, cid: int, bvid: str, credential: str) -> list[dict]:
        data = self.client.get_json(
            f"{API_BASE}/x/player/wbi/v2",
            params={"aid": aid, "cid": cid, "bvid": bvid},
            credential=credential,
            referer=f"https://www.bilibili.com/video/{bvid}/",
        )
        if data.get("code") != 0:
            logger.error(f"[Bilibili] Failed to get subtitle info for {bvid}: {data.get('message')}")
            return []
        return ((data.get("data") or {}).get("subtitle") or {}).get("subtitles") or []

    def _download_subtitle(self, subtitle_url: str) -> str:
        url = f"https:{subtitle_url}" if subtitle_url.startswith("//") else subtitle_url
        data = self.client.get_json(url)
        return "\n".join(line.get("content", "") for line in data.get("body") or [])

    @staticmethod
    def format_for_notebook(item: ScrapedItem, info: dict, transcript: str) -> str:
        """Plain-text document combining video metadata and transcript."""
        duration = int(info.get("duration") or 0)
        pubdate = info.get("pubdate")
        published = (
            datetime.fromtimestamp(int(pubdate), tz=timezone.utc).date().isoformat()
            if pubdate else "unknown"
        )
        owner = info.get("owner") or {}
        views = (info.get("stat") or {}).get("view", "unknown")

        return (
            f"# {info.get('title') or item.title}\n\n"
            f"## Video info\n"
            f"- **Uploader**: {owner.get('name') or item.author}\n"
            f"- **Published**: {published}\n"
            f"- **Link**: {item.url}\n"
            f"- **Views**: {views}\n"
            f"- **Duration**: {duration // 60}m{duration % 60}s\n\n"
            f"## Description\n{info.get('desc') or 'None'}\n\n"
            f"## Transcript\n{transcript}\n"
        )

    def enrich(self, item: ScrapedItem, credential: Optional[str] = None) -> Optional[EnrichedContent]:
        """
        Fetch subtitles and uploader metadata for one video.

        Returns:
            EnrichedContent (transcript may be None when the video has no
            subtitles), or None if the video itself could not be resolved
        """
        bvid = extract_bvid(item.url)
        if not bvid:
            logger.error(f"[Bilibili] Cannot extract BV id from {item.url}")
            return None
        if not credential:
            logger.warning(f"[Bilibili] No SESSDATA provided, skipping subtitles for {bvid}")
            return None

        info = self._get_video_info(bvid, credential)
        if not info:
            return None

        owner = info.get("owner") or {}
        content = EnrichedContent(
            description=info.get("desc") or "",
            author_id=str(owner.get("mid") or "") or None,
            author_name=owner.get("name"),
            author_avatar=owner.get("face"),
        )

        subtitles = self._get_subtitle_list(info["aid"], info["cid"], bvid, credential)
        if not subtitles:
            logger.info(f"[Bilibili] No subtitles available for {bvid}")
            return content

        track = next((s for s in subtitles if s.get("lan") == "zh-Hans"), subtitles[0])
        transcript = self._download_subtitle(track["subtitle_url"])
        logger.info(f"[Bilibili] Transcript for {bvid}: {len(transcript)} chars ({track.get('lan_doc')})")

        content.transcript = transcript
        content.formatted_content = self.format_for_notebook(item, info, transcript)
        return content
