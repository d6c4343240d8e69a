"""
Persistent browser sessions, one profile directory per platform.
"""

import logging
from pathlib import Path
from typing import Optional

from digest.config import get_settings
from digest.registry import AppConfig

logger = logging.getLogger(__name__)

SESSION_PLATFORMS = ("bilibili", "youtube", "notebooklm")

# Chromium leaves these behind when a browser dies without shutting down,
# and refuses to reopen the profile while they exist.
LOCK_FILES = ("SingletonLock", "SingletonCookie", "SingletonSocket")

SESSION_ARTIFACTS = ("Cookies",)
MIN_SESSION_BYTES = 1024  # An empty cookie DB is smaller than this
MIN_CREDENTIAL_LENGTH = 10


class SessionManager:
    """Owns the per-platform browser profile directories."""

    def __init__(self, sessions_dir: Optional[Path] = None):
        settings = get_settings()
        self.sessions_dir = Path(sessions_dir) if sessions_dir else settings.sessions_dir

    def get_session_dir(self, platform: str) -> Path:
        """Return the profile directory for a platform, creating it if needed."""
        if platform not in SESSION_PLATFORMS:
            raise ValueError(f"Unknown session platform: {platform}")
        path = self.sessions_dir / platform
        path.mkdir(parents=True, exist_ok=True)
        return path

    def session_exists(self, platform: str) -> bool:
        """True if the profile holds a non-trivial cookie store."""
        session_dir = self.get_session_dir(platform)
        for path in session_dir.rglob("*"):
            if path.name in SESSION_ARTIFACTS and path.is_file():
                if path.stat().st_size >= MIN_SESSION_BYTES:
                    return True
        return False

    def clear_stale_lock(self, platform: str) -> None:
        """Remove leftover profile lock files so the profile can be reopened."""
        session_dir = self.get_session_dir(platform)
        for name in LOCK_FILES:
            path = session_dir / name
            if path.is_symlink() or path.exists():
                path.unlink(missing_ok=True)
                logger.info(f"Removed stale {name} from {platform} profile")

    def status(self, config: AppConfig) -> dict[str, bool]:
        """
        Per-platform flag telling whether a usable session or credential exists.

        Bilibili counts as ready when a credential is configured, since its
        scraping and subtitle calls use the cookie rather than the browser.
        """
        credential = config.platform_credential or ""
        result = {}
        for platform in SESSION_PLATFORMS:
            ready = self.session_exists(platform)
            if platform == "bilibili" and len(credential) >= MIN_CREDENTIAL_LENGTH:
                ready = True
            result[platform] = ready
        return result
