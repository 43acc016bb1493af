"""
Browser session management for flow runs.
Launches Playwright with anti-automation flags and keeps one page per run.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from flowpilot.automation.dom import STEALTH_INIT_JS
from flowpilot.config import Config


class BrowserSession:
    """
    One browser, one context and one page for a single persona run.

    Parallel personas each get their own session.
    """

    def __init__(self, config: Config, run_dir: Optional[Path] = None):
        """
        Initialize the browser session.

        Args:
            config: Application configuration
            run_dir: Run directory; screenshots go to its ``screenshots`` folder
        """
        self.config = config
        self.browser_config = config.browser
        self.run_dir = run_dir
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    @property
    def screenshots_dir(self) -> Optional[Path]:
        return self.run_dir / "screenshots" if self.run_dir else None

    async def initialize(self) -> Page:
        """Start Playwright, launch the browser and open the run's page."""
        logger.info(f"🚀 Launching {self.browser_config.browser} (headless={self.browser_config.headless})...")

        self.playwright = await async_playwright().start()

        viewport = self.browser_config.viewport
        launch_options = {
            "headless": self.browser_config.headless,
            "args": [
                "--disable-blink-features=AutomationControlled",
                f"--window-size={viewport.width},{viewport.height}",
                "--no-sandbox",
                "--disable-setuid-sandbox",
                "--disable-dev-shm-usage",
                "--disable-extensions",
                "--no-first-run",
            ],
        }

        if self.browser_config.browser == "chromium":
            self.browser = await self.playwright.chromium.launch(**launch_options)
        elif self.browser_config.browser == "firefox":
            self.browser = await self.playwright.firefox.launch(headless=self.browser_config.headless)
        elif self.browser_config.browser == "webkit":
            self.browser = await self.playwright.webkit.launch(headless=self.browser_config.headless)
        else:
            raise ValueError(f"Unsupported browser: {self.browser_config.browser}")

        self.context = await self.browser.new_context(**self._context_options())
        if self.browser_config.stealth:
            await self.context.add_init_script(STEALTH_INIT_JS)
        else:
            logger.warning("⚠️ Stealth patches disabled")

        self.page = await self.context.new_page()
        self.page.set_default_navigation_timeout(self.browser_config.navigation_timeout)
        self._setup_page_handlers()

        logger.success("✅ Browser ready")
        return self.page

    def _context_options(self) -> Dict[str, Any]:
        viewport = self.browser_config.viewport
        options: Dict[str, Any] = {
            "viewport": {"width": viewport.width, "height": viewport.height},
            "locale": "en-US",
            "timezone_id": "America/Chicago",
        }
        if self.browser_config.user_agent:
            options["user_agent"] = self.browser_config.user_agent
        return options

    def _setup_page_handlers(self):
        self.page.on("console", lambda msg: logger.debug(f"Browser console: {msg.text}"))
        self.page.on("pageerror", lambda err: logger.debug(f"Page error: {err}"))
        # Confirmation dialogs would otherwise block the flow
        self.page.on("dialog", lambda dialog: asyncio.create_task(dialog.accept()))

    async def take_screenshot(self, name: str = "screenshot", full_page: bool = True) -> Optional[str]:
        """
        Take a screenshot of the current page.

        Args:
            name: Screenshot name
            full_page: Capture the whole scrollable page

        Returns:
            Path to screenshot file or None if failed
        """
        try:
            screenshots_dir = self.screenshots_dir or Path("data/screenshots")
            screenshots_dir.mkdir(parents=True, exist_ok=True)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filepath = screenshots_dir / f"{name}_{timestamp}.png"

            await self.page.screenshot(path=str(filepath), full_page=full_page)
            logger.info(f"Screenshot saved: {filepath}")
            return str(filepath)

        except Exception as e:
            logger.error(f"Error taking screenshot: {e}")
            return None

    async def close(self):
        """Close browser and clean up resources."""
        try:
            if self.page:
                await self.page.close()
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
            if self.playwright:
                await self.playwright.stop()

            logger.info("Browser closed")

        except Exception as e:
            logger.error(f"Error closing browser: {e}")
