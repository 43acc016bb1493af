"""
CAPTCHA gate: a blocking barrier placed before and after sensitive
transitions.

When a challenge is on screen the gate optionally asks the solving
service for a token, then polls until the challenge disappears (for
example because an operator solved it in the open browser). A challenge
that outlives the timeout ends the run with ``CaptchaTimeout``.
"""

import asyncio
import time
from typing import Optional

from loguru import logger
from playwright.async_api import Page

from flowpilot.captcha.solver import CaptchaSolver
from flowpilot.config import CaptchaConfig
from flowpilot.errors import CaptchaTimeout

URL_MARKERS = ("/t/validate", "captcha", "challenge")
TITLE_MARKERS = ("checkpoint", "security")
FRAME_SELECTOR = 'iframe[title*="reCAPTCHA"]'

RECAPTCHA_SITEKEY_JS = """
() => {
    const holder = document.querySelector('[data-sitekey]');
    if (holder) return holder.getAttribute('data-sitekey');
    const frame = document.querySelector('iframe[src*="recaptcha"]');
    if (!frame) return null;
    const match = frame.src.match(/[?&]k=([^&]+)/);
    return match ? match[1] : null;
}
"""

INJECT_RECAPTCHA_TOKEN_JS = """
(token) => {
    let field = document.getElementById('g-recaptcha-response');
    if (!field) {
        field = document.createElement('textarea');
        field.id = 'g-recaptcha-response';
        field.name = 'g-recaptcha-response';
        field.style.display = 'none';
        document.body.appendChild(field);
    }
    field.value = token;
    const form = field.closest('form');
    if (form) form.submit();
    return true;
}
"""


class CaptchaGate:
    """
    Poll-with-timeout barrier around CAPTCHA challenges.
    """

    def __init__(self, page: Page, config: CaptchaConfig, solver: Optional[CaptchaSolver] = None):
        """
        Args:
            page: Playwright page shared by the run
            config: CAPTCHA configuration (timeout and poll interval in seconds)
            solver: Optional solving service used before falling back to polling
        """
        self.page = page
        self.timeout = config.timeout
        self.poll_interval = config.poll_interval
        self.solver = solver
        self.waited_seconds = 0.0
        self.encounters = 0

    async def is_present(self) -> bool:
        """Whether a CAPTCHA challenge is currently blocking the page."""
        url = self.page.url.lower()
        if any(marker in url for marker in URL_MARKERS):
            return True

        try:
            title = (await self.page.title()).lower()
            if any(marker in title for marker in TITLE_MARKERS):
                return True
        except Exception:
            pass

        try:
            frame = self.page.locator(FRAME_SELECTOR).first
            return await frame.count() > 0 and await frame.is_visible()
        except Exception:
            return False

    async def wait_until_clear(self) -> float:
        """
        Block until no challenge is present.

        Returns:
            Seconds spent waiting (0 when no challenge was present)

        Raises:
            CaptchaTimeout: The challenge was still present after the timeout
        """
        if not await self.is_present():
            return 0.0

        self.encounters += 1
        logger.warning(f"🧩 CAPTCHA detected on {self.page.url}")
        start = time.monotonic()

        try:
            if self.solver is not None:
                await self._try_solve()

            while await self.is_present():
                elapsed = time.monotonic() - start
                if elapsed >= self.timeout:
                    logger.error(f"❌ CAPTCHA still present after {elapsed:.0f}s")
                    raise CaptchaTimeout(elapsed)
                logger.info(f"   ⏳ Waiting for CAPTCHA to be completed... {elapsed:.0f}s")
                await asyncio.sleep(self.poll_interval)
        finally:
            waited = time.monotonic() - start
            self.waited_seconds += waited

        logger.success(f"✅ CAPTCHA cleared after {waited:.1f}s")
        return waited

    async def _try_solve(self) -> bool:
        """Ask the solving service for a token and inject it into the page."""
        try:
            sitekey = await self.page.evaluate(RECAPTCHA_SITEKEY_JS)
        except Exception as e:
            logger.debug(f"Could not read reCAPTCHA sitekey: {e}")
            return False
        if not sitekey:
            logger.info("   No reCAPTCHA sitekey found, waiting for manual completion")
            return False

        token = await self.solver.solve_recaptcha_v2(sitekey, self.page.url)
        if not token:
            return False

        try:
            await self.page.evaluate(INJECT_RECAPTCHA_TOKEN_JS, token)
            return True
        except Exception as e:
            logger.warning(f"⚠️ Failed to inject CAPTCHA token: {e}")
            return False
