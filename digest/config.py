"""
Configuration management using Pydantic Settings.
Loads from environment variables with sensible defaults for local use.

These are runtime settings only (where files live, limits, timeouts).
The user-curated source registry lives in config.json, see digest.registry.
"""

from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).parent.parent / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DIGEST_",
        case_sensitive=False,
    )

    # Paths
    data_dir: Path = DATA_DIR
    config_path: Path = DATA_DIR / "config.json"  # Source registry
    history_path: Path = DATA_DIR / "history.json"  # Previously synced URLs
    run_log_path: Path = DATA_DIR / "logs.json"  # One entry per routine run
    sessions_dir: Path = DATA_DIR / ".sessions"  # Persistent browser profiles

    # Bookkeeping limits
    history_limit: int = 1000
    run_log_limit: int = 50

    # Scraping
    youtube_videos_per_channel: int = 1  # Newest uploads taken per channel
    yt_dlp_path: str = "yt-dlp"
    bilibili_page_size: int = 5
    bilibili_min_duration_seconds: int = 600  # Skip shorts
    bilibili_request_delay: float = 0.5  # Pause between creators
    feed_window_hours: int = 24

    # Enrichment
    enrichment_concurrency: int = 3  # Parallel transcript fetches

    # Notebook sync
    notebook_url: str = "https://notebooklm.google.com/"
    notebook_headless: bool = False
    summary_prompt: str = "Summarize the key points of every source in this notebook."
    processing_wait_seconds: float = 5.0  # Let inserted sources settle
    query_ready_timeout: float = 60.0  # Max wait for the query box
    query_poll_interval: float = 2.0
    close_browser_on_finish: bool = True

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
