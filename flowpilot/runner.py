"""
Run orchestrator that wires the browser, model client, CAPTCHA solver and
flow driver together for one persona.
"""

import json
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from flowpilot.automation.browser import BrowserSession
from flowpilot.automation.flow_driver import DEFAULT_OBJECTIVE, FlowDriver
from flowpilot.automation.llm_client import LLMClient
from flowpilot.automation.step_cache import StepCache
from flowpilot.captcha.solver import CaptchaSolver
from flowpilot.config import Config, get_config
from flowpilot.models import FlowResult, FormData, TestGoals


class FlowRunner:
    """
    Runs the onboarding flow once and stores the result in a run directory.
    """

    def __init__(self, config: Optional[Config] = None, goals: Optional[TestGoals] = None):
        """
        Initialize the runner.

        Args:
            config: Configuration object (loads from file if None)
            goals: Test goals overriding the configured ones
        """
        self.config = config or get_config()
        self.goals = goals or self.config.goals
        self.data = FormData(
            persona=self.config.persona,
            business=self.config.business,
            card=self.config.payment.card,
        )
        self.run_dir = self._make_run_dir()
        self.session: Optional[BrowserSession] = None

        logger.info(f"🤖 Flow runner initialized (run dir: {self.run_dir})")

    def _make_run_dir(self) -> Path:
        slug = re.sub(r"[^a-z0-9]+", "-", self.data.persona.display_name.lower()).strip("-")
        run_id = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{slug or 'persona'}"
        return Path(self.config.artifacts.directory) / run_id

    def _create_llm_client(self) -> Optional[LLMClient]:
        llm_config = self.config.llm
        if not llm_config.enabled:
            logger.info("🧠 Model tiers disabled in config - direct selectors only")
            return None
        if not llm_config.api_key:
            logger.warning("⚠️ No OpenAI API key configured - semantic and vision tiers disabled")
            return None
        return LLMClient(llm_config)

    def _create_step_cache(self) -> Optional[StepCache]:
        if not self.config.flow.use_step_cache:
            return None
        return StepCache(self.config.flow.step_cache_path)

    async def run(self, start_url: Optional[str] = None, objective: str = DEFAULT_OBJECTIVE) -> FlowResult:
        """
        Execute one run and write ``result.json`` into the run directory.

        Returns:
            The flow result (never raises for run failures)
        """
        start_url = start_url or self.config.flow.base_url
        logger.info("🚀 Starting onboarding flow run...")
        logger.info(f"   Persona: {self.data.persona.display_name} <{self.data.persona.email}>")
        logger.info(f"   Package: {self.goals.package_preference} | Upsells: {self.goals.upsell_strategy}")

        start_time = time.time()
        try:
            self.session = BrowserSession(self.config, self.run_dir)
            page = await self.session.initialize()

            step_cache = self._create_step_cache()
            driver = FlowDriver.build(
                page,
                self.config,
                self.data,
                self.goals,
                llm=self._create_llm_client(),
                solver=CaptchaSolver.from_config(self.config.captcha),
                screenshots_dir=self.session.screenshots_dir,
                step_cache=step_cache,
            )
            result = await driver.run_flow(start_url, objective)
            if step_cache is not None:
                self.log_step_cache(step_cache)

        except Exception as e:
            logger.error(f"❌ Fatal error: {e}")
            artifacts = {}
            if self.session and self.session.page:
                path = await self.session.take_screenshot("runner_failure")
                if path:
                    artifacts["runner_failure"] = path
            result = FlowResult(
                success=False,
                step_count=0,
                final_location=start_url,
                error=str(e),
                error_type=type(e).__name__,
                artifacts=artifacts,
                duration_seconds=round(time.time() - start_time, 2),
            )
        finally:
            await self._cleanup()

        self.write_result(result)
        return result

    def log_step_cache(self, step_cache: StepCache) -> dict:
        stats = step_cache.stats()
        logger.info(
            f"🗂️ Step cache: {stats['locations']} location(s), "
            f"{stats['total_attempts']} replay(s), {stats['success_rate']:.0%} success"
        )
        return stats

    def write_result(self, result: FlowResult) -> Path:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        path = self.run_dir / "result.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(result.model_dump(), f, indent=2)
        logger.info(f"📝 Result written to {path}")
        return path

    async def _cleanup(self):
        logger.info("🧹 Cleaning up...")
        if self.session:
            await self.session.close()
