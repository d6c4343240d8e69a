#!/usr/bin/env python3
"""
Daily digest CLI.

Scrapes followed channels and feeds, syncs anything new into today's
notebook and asks for a summary.

Usage:
    python scripts/run_digest.py                    # Run once, close the browser after
    python scripts/run_digest.py --keep-open        # Leave the browser open for review
    python scripts/run_digest.py --status           # Show session/credential status
    python scripts/run_digest.py --config           # Show the source registry
    python scripts/run_digest.py --logs 5           # Show the 5 newest runs
    python scripts/run_digest.py --resync <LOG_ID>  # Push a recorded run again
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from digest.config import get_settings
from digest.notebook.sessions import SessionManager
from digest.pipeline.orchestrator import DailyRoutine, ResyncRejected, RoutineResult, RunNotFound
from digest.registry import ConfigError, ConfigStore
from digest.run_log import RunLogStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def progress_callback(message: str):
    """Display progress during a run."""
    print(f"  > {message}", flush=True)


def print_result(result: RoutineResult):
    print("\n" + "=" * 60)
    print(f"RESULT: {result.status.upper()}")
    print("=" * 60)
    print(result.message)

    if result.notebook_url:
        print(f"\nNotebook: {result.notebook_url}")

    if result.scraped_items:
        print(f"\nItems ({len(result.scraped_items)}):")
        for item in result.scraped_items[:20]:
            print(f"  [{item['source']}] {item['title'][:60]}")
        if len(result.scraped_items) > 20:
            print(f"  ... and {len(result.scraped_items) - 20} more")

    if result.error:
        print(f"\nError: {result.error}")


def show_status():
    """Display per-platform session status."""
    print("\n=== Session Status ===\n")

    try:
        config = ConfigStore().read()
    except ConfigError as e:
        print(f"Error reading config: {e}")
        return

    for platform, ready in SessionManager().status(config).items():
        print(f"  {platform:<12} {'ready' if ready else 'missing'}")


def show_config():
    """Display the source registry."""
    settings = get_settings()

    try:
        config = ConfigStore().read()
    except ConfigError as e:
        print(f"Error reading config: {e}")
        return

    print("\n=== Digest Configuration ===\n")
    print(f"Config file: {settings.config_path}")
    for platform, platform_cfg in config.platforms.items():
        print(f"\n{platform.capitalize()}:")
        if not platform_cfg.sources:
            print("  (no sources)")
        for source in platform_cfg.sources:
            flag = " " if source.enabled else "x"
            name = f" ({source.cached_name})" if source.cached_name else ""
            print(f"  [{flag}] {source.id}{name}")

    print(f"\nFeeds: {len(config.feed_urls)}")
    for url in config.feed_urls:
        print(f"  {url}")
    print(f"\nBrowser: {config.external_browser_path or 'Playwright Chromium'}")
    credential = config.platform_credential
    print(f"Bilibili credential: {'***' + credential[-4:] if credential else 'Not set'}")


def show_logs(count: int):
    """Display the newest run log entries."""
    entries = RunLogStore().read_all()[:count]

    print(f"\n=== Last {len(entries)} Runs ===\n")
    for entry in entries:
        sync = f" sync={entry.sync_status}" if entry.sync_status else ""
        print(f"{entry.timestamp}  {entry.id}  [{entry.status}]{sync}")
        print(f"    {entry.message}")
        if entry.sync_error:
            print(f"    Sync error: {entry.sync_error}")
        if entry.notebook_url:
            print(f"    Notebook: {entry.notebook_url}")


async def run_routine(keep_open: bool = False, resync_id: str = None) -> RoutineResult:
    """Run (or resync) once, optionally waiting before closing the browser."""
    routine = DailyRoutine(close_on_finish=not keep_open)

    if resync_id:
        result = await routine.resync(resync_id, on_progress=progress_callback)
    else:
        result = await routine.run(on_progress=progress_callback)

    print_result(result)

    if routine.open_client is not None:
        await asyncio.to_thread(input, "\nBrowser left open for review. Press Enter to close it...")
        await routine.close_open_client()

    return result


def main():
    parser = argparse.ArgumentParser(
        description="Collect new videos and posts into today's notebook",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_digest.py                  # Run once
  python scripts/run_digest.py --keep-open      # Keep the browser open afterwards
  python scripts/run_digest.py --status         # Show session status
  python scripts/run_digest.py --logs 10        # Show recent runs
  python scripts/run_digest.py --resync ID      # Push a recorded run again
        """,
    )

    parser.add_argument(
        "--keep-open",
        action="store_true",
        help="Leave the notebook browser open after the run",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show per-platform session status and exit",
    )
    parser.add_argument(
        "--config",
        action="store_true",
        help="Show the source registry and exit",
    )
    parser.add_argument(
        "--logs",
        type=int,
        metavar="N",
        help="Show the N newest run log entries and exit",
    )
    parser.add_argument(
        "--resync",
        metavar="LOG_ID",
        help="Push the items of a recorded run into the notebook again",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.status:
        show_status()
        return

    if args.config:
        show_config()
        return

    if args.logs:
        show_logs(args.logs)
        return

    try:
        result = asyncio.run(run_routine(keep_open=args.keep_open, resync_id=args.resync))
    except (RunNotFound, ResyncRejected) as e:
        print(f"\nCannot resync: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nRun failed: {e}")
        logger.exception("Run error")
        sys.exit(1)

    if result.status == "failed":
        sys.exit(1)


if __name__ == "__main__":
    main()
