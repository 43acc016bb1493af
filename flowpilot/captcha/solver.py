"""
Optional reCAPTCHA v2 solving through the 2Captcha service.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from loguru import logger
from twocaptcha import TwoCaptcha

from flowpilot.config import CaptchaConfig
from flowpilot.utils.resilience import retry_with_backoff

# Thread pool for running the blocking 2Captcha client from async code
_executor = ThreadPoolExecutor(max_workers=2)


class CaptchaSolver:
    """
    Requests reCAPTCHA v2 tokens from 2Captcha.
    """

    def __init__(self, api_key: str, timeout: float = 120, retry_attempts: int = 3,
                 solver: Optional[TwoCaptcha] = None):
        """
        Initialize CAPTCHA solver.

        Args:
            api_key: 2Captcha API key
            timeout: Maximum time to wait for a solution (seconds)
            retry_attempts: Number of attempts before giving up
            solver: Preconfigured client (built from api_key when omitted)
        """
        self.retry_attempts = retry_attempts
        self.solver = solver or TwoCaptcha(api_key, recaptchaTimeout=int(timeout))
        logger.info("2Captcha solver initialized")

    @classmethod
    def from_config(cls, config: CaptchaConfig) -> Optional["CaptchaSolver"]:
        """Build a solver when an API key is configured, otherwise None."""
        if not config.api_key or config.service.lower() != "2captcha":
            return None
        return cls(config.api_key, timeout=config.timeout, retry_attempts=config.retry_attempts)

    def _solve_sync(self, sitekey: str, page_url: str, invisible: bool) -> Optional[str]:
        @retry_with_backoff(max_retries=max(self.retry_attempts - 1, 0), base_delay=5.0)
        def request():
            return self.solver.recaptcha(sitekey=sitekey, url=page_url, invisible=1 if invisible else 0)

        result = request()
        return result.get("code") if result else None

    async def solve_recaptcha_v2(self, sitekey: str, page_url: str,
                                 invisible: bool = False) -> Optional[str]:
        """
        Solve reCAPTCHA v2.

        Returns:
            CAPTCHA solution token or None if solving failed
        """
        logger.info(f"🧩 Solving reCAPTCHA v2 (invisible={invisible}) for {page_url}")
        loop = asyncio.get_running_loop()
        try:
            token = await loop.run_in_executor(_executor, self._solve_sync, sitekey, page_url, invisible)
        except Exception as e:
            logger.error(f"❌ Failed to solve reCAPTCHA v2: {e}")
            return None

        if token:
            logger.success("✅ reCAPTCHA v2 solved successfully")
        return token
