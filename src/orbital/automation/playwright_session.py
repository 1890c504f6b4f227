"""Playwright-based implementation of the automation capability.

Each session launches its own headless Chromium so that jobs never share
cookies, storage or page state.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from orbital.automation.session import (
    AutomationSession,
    Download,
    SessionConfig,
    SessionFactory,
)

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS: tuple[str, ...] = ("--no-sandbox", "--disable-setuid-sandbox")


class PlaywrightDownload(Download):
    def __init__(self, download: Any) -> None:
        self._download = download  # playwright.async_api.Download

    @property
    def suggested_filename(self) -> str:
        return str(self._download.suggested_filename)

    async def save_to(self, path: Path) -> None:
        await self._download.save_as(str(path))


class PlaywrightSession(AutomationSession):
    def __init__(
        self,
        playwright: Any,  # playwright.async_api.Playwright
        browser: Any,  # playwright.async_api.Browser
        context: Any,  # playwright.async_api.BrowserContext
        page: Any,  # playwright.async_api.Page
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._closed = False

    async def navigate(self, url: str) -> None:
        await self._page.goto(url, wait_until="networkidle")

    async def wait_ms(self, duration: int) -> None:
        await self._page.wait_for_timeout(duration)

    async def click(self, selector: str) -> None:
        await self._page.click(selector)

    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value)

    async def wait_for_selector(self, selector: str) -> None:
        await self._page.wait_for_selector(selector)

    async def capture_screenshot(self, path: Path, full_page: bool) -> None:
        await self._page.screenshot(path=str(path), full_page=full_page)

    async def await_next_download(self) -> Download:
        download = await self._page.wait_for_event("download")
        return PlaywrightDownload(download)

    async def evaluate_script(self, script: str) -> object:
        return await self._page.evaluate(script)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._context.close()
            await self._browser.close()
        except PlaywrightError as e:
            # The browser may already be gone after a crash or a cancelled step.
            logger.warning("Browser did not close cleanly", extra={"error": str(e)})
        finally:
            await self._playwright.stop()


class PlaywrightSessionFactory(SessionFactory):
    def __init__(
        self,
        *,
        headless: bool = True,
        launch_args: tuple[str, ...] = DEFAULT_LAUNCH_ARGS,
    ) -> None:
        self._headless = headless
        self._launch_args = launch_args

    async def start(self, config: SessionConfig) -> AutomationSession:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=self._headless, args=list(self._launch_args)
            )
            context = await browser.new_context(
                viewport={"width": config.viewport_width, "height": config.viewport_height},
                user_agent=config.user_agent,
                accept_downloads=True,
            )
            page = await context.new_page()
            page.set_default_timeout(config.default_timeout_ms)
        except BaseException:
            await playwright.stop()
            raise

        logger.info(
            "Launched Chromium session",
            extra={
                "viewport": f"{config.viewport_width}x{config.viewport_height}",
                "default_timeout_ms": config.default_timeout_ms,
            },
        )
        return PlaywrightSession(playwright, browser, context, page)
