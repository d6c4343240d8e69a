"""
UI-automation primitives for the notebook web app, on async Playwright.

Nothing here knows about the sync protocol; NotebookClient sequences these
primitives. Labels are the English UI strings and can be overridden per
instance when the UI language differs.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import (
    async_playwright,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeout,
)

logger = logging.getLogger(__name__)

LOGIN_HOST = "accounts.google.com"

DEFAULT_LABELS: Dict[str, str] = {
    "create_notebook": "Create new",
    "close_dialog": "Close",
    "add_source": "Add source",
    "youtube_chip": "YouTube",
    "youtube_input": "Paste YouTube URL",
    "website_chip": "Website",
    "website_input": "Paste URLs",
    "text_chip": "Copied text",
    "insert": "Insert",
    "source_menu": "More",
    "rename_source": "Rename source",
    "query_box": "Query box",
    "submit": "Submit",
}

DEFAULT_SELECTORS: Dict[str, str] = {
    "notebook_title": ".project-button-title",
    "notebook_title_input": "input.title-input",
    "text_area": "textarea.text-area",
    "source_entry": ".single-source-container",
    "rename_input": "input.rename-input",
}


class NotebookDriver(ABC):
    """The UI capabilities NotebookClient needs from an automation backend."""

    @abstractmethod
    async def launch(self, profile_dir: Path, browser_path: str = "", headless: bool = False) -> None: ...

    @abstractmethod
    async def open_home(self, url: str) -> None: ...

    @abstractmethod
    async def needs_login(self) -> bool: ...

    @abstractmethod
    async def list_notebooks(self) -> list[str]: ...

    @abstractmethod
    async def open_notebook(self, title: str) -> None: ...

    @abstractmethod
    async def create_notebook(self, name: str) -> None: ...

    @abstractmethod
    async def current_url(self) -> str: ...

    @abstractmethod
    async def add_link_source(self, url: str) -> None: ...

    @abstractmethod
    async def add_text_source(self, content: str) -> None: ...

    @abstractmethod
    async def add_web_sources(self, urls: list[str]) -> None: ...

    @abstractmethod
    async def rename_source(self, match_texts: list[str], label: str) -> bool:
        """Rename the newest source entry whose text contains any of match_texts."""

    @abstractmethod
    async def query_ready(self) -> bool: ...

    @abstractmethod
    async def submit_query(self, text: str) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class PlaywrightNotebookDriver(NotebookDriver):
    """
    Drives the notebook UI in a persistent Chromium profile.

    Examples
    --------
    driver = PlaywrightNotebookDriver()
    await driver.launch(profile_dir)
    await driver.open_home("https://notebooklm.google.com/")
    """

    def __init__(
        self,
        *,
        timeout: float = 30_000,
        labels: Optional[Dict[str, str]] = None,
        selectors: Optional[Dict[str, str]] = None,
        extra_context_kwargs: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.timeout = timeout
        self.labels = {**DEFAULT_LABELS, **(labels or {})}
        self.selectors = {**DEFAULT_SELECTORS, **(selectors or {})}
        self._context_kwargs = extra_context_kwargs or {}

        self._playwright = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Driver not launched")
        return self._page

    # --------------------------------------------------------------------- #
    # Lifecycle
    async def launch(self, profile_dir: Path, browser_path: str = "", headless: bool = False) -> None:
        """Start Playwright with a persistent context bound to profile_dir."""
        if self._context:
            return

        self._playwright = await async_playwright().start()
        launch_kwargs: Dict[str, Any] = {
            "headless": headless,
            "viewport": None,
            "ignore_default_args": ["--enable-automation"],
            "args": [
                "--disable-blink-features=AutomationControlled",
                "--password-store=basic",
                "--window-size=1280,800",
            ],
            **self._context_kwargs,
        }
        if browser_path:
            launch_kwargs["executable_path"] = browser_path

        self._context = await self._playwright.chromium.launch_persistent_context(
            str(profile_dir), **launch_kwargs
        )
        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        self._page.set_default_timeout(self.timeout)
        logger.info("Notebook browser started (profile=%s, headless=%s)", profile_dir, headless)

    async def close(self) -> None:
        """Close context & Playwright; safe to call repeatedly."""
        if self._context:
            await self._context.close()
            self._context = None
            self._page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Notebook browser stopped")

    # --------------------------------------------------------------------- #
    # Navigation
    async def open_home(self, url: str) -> None:
        await self.page.bring_to_front()
        await self.page.goto(url, wait_until="load", timeout=60_000)
        await self.page.wait_for_timeout(2000)
        logger.info("Notebook home loaded: %s", self.page.url)

    async def needs_login(self) -> bool:
        return LOGIN_HOST in self.page.url

    async def current_url(self) -> str:
        return self.page.url

    async def list_notebooks(self) -> list[str]:
        titles = await self.page.locator(self.selectors["notebook_title"]).all_inner_texts()
        return [t.strip() for t in titles if t.strip()]

    async def open_notebook(self, title: str) -> None:
        await self.page.locator(self.selectors["notebook_title"]).filter(has_text=title).first.click()
        await self.page.wait_for_timeout(2000)

    async def create_notebook(self, name: str) -> None:
        page = self.page
        await page.get_by_role("button", name=re.compile(self.labels["create_notebook"], re.I)).first.click()

        # Creating a notebook opens the add-source dialog first
        close_button = page.get_by_role("button", name=self.labels["close_dialog"])
        try:
            await close_button.wait_for(state="visible", timeout=15_000)
            await close_button.click()
            await page.wait_for_timeout(500)
        except PlaywrightTimeout:
            pass

        title_input = page.locator(self.selectors["notebook_title_input"])
        await title_input.click()
        await title_input.fill(name)
        await title_input.press("Enter")
        await page.wait_for_timeout(1000)

    # --------------------------------------------------------------------- #
    # Sources
    async def _open_add_source(self, chip_label: str) -> None:
        await self.page.get_by_role("button", name=self.labels["add_source"]).click()
        await self.page.wait_for_timeout(500)
        await self.page.get_by_text(chip_label, exact=True).first.click()
        await self.page.wait_for_timeout(500)

    async def add_link_source(self, url: str) -> None:
        await self._open_add_source(self.labels["youtube_chip"])
        await self.page.get_by_role("textbox", name=self.labels["youtube_input"]).fill(url)
        await self.page.get_by_role("button", name=self.labels["insert"]).click()
        await self.page.wait_for_timeout(2000)

    async def add_web_sources(self, urls: list[str]) -> None:
        await self._open_add_source(self.labels["website_chip"])
        await self.page.get_by_role("textbox", name=self.labels["website_input"]).fill("\n".join(urls))
        await self.page.get_by_role("button", name=self.labels["insert"]).click()
        await self.page.wait_for_timeout(3000)

    async def add_text_source(self, content: str) -> None:
        await self._open_add_source(self.labels["text_chip"])
        await self.page.locator(self.selectors["text_area"]).fill(content)
        await self.page.get_by_role("button", name=self.labels["insert"]).click()
        await self.page.wait_for_timeout(2000)

    async def rename_source(self, match_texts: list[str], label: str) -> bool:
        entries = self.page.locator(self.selectors["source_entry"])
        count = await entries.count()

        # Newest first; the match is by content, the index only orders the scan
        for index in reversed(range(count)):
            entry = entries.nth(index)
            try:
                text = await entry.inner_text()
            except PlaywrightError:
                continue
            if not any(m and m in text for m in match_texts):
                continue

            await entry.get_by_role("button", name=self.labels["source_menu"]).click()
            await self.page.get_by_role("menuitem", name=self.labels["rename_source"]).click()
            rename_input = self.page.locator(self.selectors["rename_input"])
            await rename_input.fill(label)
            await rename_input.press("Enter")
            await self.page.wait_for_timeout(500)
            return True

        return False

    # --------------------------------------------------------------------- #
    # Query
    async def query_ready(self) -> bool:
        query_box = self.page.get_by_role("textbox", name=self.labels["query_box"])
        try:
            await query_box.wait_for(state="visible", timeout=2_000)
        except PlaywrightTimeout:
            return False
        return not await query_box.is_disabled()

    async def submit_query(self, text: str) -> None:
        await self.page.get_by_role("textbox", name=self.labels["query_box"]).fill(text)
        await self.page.get_by_role("button", name=self.labels["submit"]).click()
