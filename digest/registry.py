"""
Source registry: which creators and feeds are followed, per platform.

The registry is persisted as config.json and edited by hand or through the
API. Its shape changed several times; every historical shape carries (or is
recognised as) an integer version and is upgraded one step at a time until
it reaches CURRENT_VERSION:

    v0  flat youtube_whitelist / bilibili_whitelist arrays, rss_feeds, chrome_exe_path
    v1  platforms.{id}.whitelist arrays, rss_feeds, chrome_exe_path, bilibili_sessdata
    v2  platforms.{id}.sources [SourceItem], feed_urls, external_browser_path,
        platform_credential
"""

import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, Field, ValidationError

from digest.config import get_settings
from digest.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

CURRENT_VERSION = 2
PLATFORM_IDS = ("youtube", "bilibili")


class ConfigError(ValueError):
    """The registry file exists but cannot be read or understood."""


class SourceItem(BaseModel):
    """One followed creator/channel on a platform."""

    id: str
    enabled: bool = True
    cached_name: Optional[str] = None  # Display metadata, filled in by scrapes
    cached_avatar: Optional[str] = None


class PlatformConfig(BaseModel):
    """Sources followed on one platform."""

    sources: list[SourceItem] = Field(default_factory=list)

    def enabled_ids(self) -> list[str]:
        return [s.id for s in self.sources if s.enabled]


def _default_platforms() -> dict[str, PlatformConfig]:
    return {platform: PlatformConfig() for platform in PLATFORM_IDS}


class AppConfig(BaseModel):
    """Current (v2) registry shape."""

    version: int = CURRENT_VERSION
    platforms: dict[str, PlatformConfig] = Field(default_factory=_default_platforms)
    feed_urls: list[str] = Field(default_factory=list)
    external_browser_path: str = ""  # Empty means Playwright's bundled Chromium
    platform_credential: Optional[str] = None  # Bilibili SESSDATA cookie

    def enabled_sources(self, platform: str) -> list[str]:
        """Enabled source ids for a platform (empty if the platform is absent)."""
        platform_cfg = self.platforms.get(platform)
        return platform_cfg.enabled_ids() if platform_cfg else []


def default_config() -> AppConfig:
    return AppConfig()


# ---------- Migration ----------

def detect_version(raw: dict) -> int:
    """Work out which historical shape a raw registry document has."""
    if "version" in raw:
        try:
            return int(raw["version"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config version: {raw['version']!r}") from e

    platforms = raw.get("platforms")
    if not isinstance(platforms, dict):
        return 0
    if any(isinstance(p, dict) and "sources" in p for p in platforms.values()):
        return CURRENT_VERSION
    return 1


def _upgrade_v0_to_v1(raw: dict) -> dict:
    """Fold flat <platform>_whitelist arrays into platforms.{id}.whitelist."""
    data = dict(raw)
    platforms = {}
    for platform in PLATFORM_IDS:
        whitelist = data.pop(f"{platform}_whitelist", None)
        platforms[platform] = {"whitelist": list(whitelist or [])}

    # Hacker News support was retired
    data.pop("hn_config", None)

    data["platforms"] = platforms
    data["version"] = 1
    return data


def _upgrade_v1_to_v2(raw: dict) -> dict:
    """Turn whitelist id arrays into SourceItem structs and rename top-level fields."""
    data = dict(raw)
    platforms = {}
    for platform, platform_cfg in (data.get("platforms") or {}).items():
        platform_cfg = platform_cfg or {}
        sources = list(platform_cfg.get("sources") or [])
        for source_id in platform_cfg.get("whitelist") or []:
            source_id = str(source_id).strip()
            if source_id:
                sources.append({"id": source_id, "enabled": True})
        platforms[platform] = {"sources": sources}

    data["platforms"] = platforms
    data["feed_urls"] = data.pop("rss_feeds", None) or []
    data["external_browser_path"] = data.pop("chrome_exe_path", None) or ""
    data["platform_credential"] = data.pop("bilibili_sessdata", None)
    data["version"] = 2
    return data


UPGRADES: dict[int, Callable[[dict], dict]] = {
    0: _upgrade_v0_to_v1,
    1: _upgrade_v1_to_v2,
}


def migrate(raw: dict) -> tuple[dict, bool]:
    """
    Upgrade a raw registry document to the current shape.

    Returns:
        Tuple of (upgraded document, whether any upgrade was applied)
    """
    version = detect_version(raw)
    if version > CURRENT_VERSION:
        raise ConfigError(f"Unsupported config version {version} (newest known is {CURRENT_VERSION})")

    data = dict(raw)
    migrated = False
    while version < CURRENT_VERSION:
        logger.info(f"Upgrading config from v{version} to v{version + 1}")
        data = UPGRADES[version](data)
        version += 1
        migrated = True
    return data, migrated


def parse_config(raw: Any) -> tuple[AppConfig, bool]:
    """
    Validate a raw document of any known version.

    Returns:
        Tuple of (config, whether it was upgraded from a legacy shape)

    Raises:
        ConfigError: if the document is not a valid registry
    """
    if not isinstance(raw, dict):
        raise ConfigError("Config is not a JSON object")

    data, migrated = migrate(raw)
    try:
        return AppConfig.model_validate(data), migrated
    except ValidationError as e:
        raise ConfigError(f"Invalid config schema:\n{e}") from e


# ---------- Persistence ----------

class ConfigStore:
    """
    Reads and writes the registry file.

    Usage:
        store = ConfigStore()
        config = store.read()
        config.feed_urls.append("https://example.com/feed.xml")
        store.write(config)
    """

    def __init__(self, path: Optional[Path] = None):
        settings = get_settings()
        self.path = Path(path) if path else settings.config_path

    def read(self) -> AppConfig:
        """
        Load the registry, creating the default one if the file is missing.

        Legacy shapes are upgraded and persisted back once.

        Raises:
            ConfigError: if the file exists but is unreadable or malformed
        """
        if not self.path.exists():
            logger.info(f"No config at {self.path}, writing defaults")
            config = default_config()
            self.write(config)
            return config

        try:
            raw = read_json(self.path)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Could not read config at {self.path}: {e}") from e

        try:
            config, migrated = parse_config(raw)
        except ConfigError as e:
            raise ConfigError(f"Config at {self.path}: {e}") from e

        if migrated:
            self.write(config)
            logger.info(f"Persisted upgraded config to {self.path}")

        return config

    def write(self, config: AppConfig) -> None:
        write_json_atomic(self.path, config.model_dump(mode="json"))


# ---------- Metadata backfill ----------

def _is_unset(value: Optional[str], source_id: str) -> bool:
    return not value or value == source_id


def backfill_source_metadata(
    config: AppConfig,
    platform: str,
    candidate_ids: Iterable[Optional[str]],
    name: Optional[str] = None,
    avatar: Optional[str] = None,
) -> bool:
    """
    Fill in cached display name/avatar on matching registry sources.

    A cached field is only written when it is empty or still equals the raw
    source id; values that were already enriched are never overwritten.

    Args:
        config: Registry to mutate in place
        platform: Platform whose sources are searched
        candidate_ids: Ids an item may be known by (author id, author name)
        name: Display name discovered for the creator
        avatar: Avatar URL discovered for the creator

    Returns:
        True if any source was changed
    """
    platform_cfg = config.platforms.get(platform)
    if platform_cfg is None:
        return False

    ids = {str(c) for c in candidate_ids if c}
    changed = False
    for source in platform_cfg.sources:
        if source.id not in ids:
            continue
        if name and name not in (source.id, source.cached_name) and _is_unset(source.cached_name, source.id):
            source.cached_name = name
            changed = True
            logger.info(f"Updated {platform} source {source.id} name: {name}")
        if avatar and avatar != source.cached_avatar and _is_unset(source.cached_avatar, source.id):
            source.cached_avatar = avatar
            changed = True
            logger.info(f"Updated {platform} source {source.id} avatar")
    return changed
