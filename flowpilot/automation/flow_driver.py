"""
Flow driver: the bounded step loop that walks the funnel to a terminal page.

Each iteration clears the CAPTCHA gate, closes blocking dialogs, reads the
location, checks the stuck and terminal conditions and dispatches to the
registered page handler. Locations without a handler are left to the
vision tier.
"""

import time
from pathlib import Path
from typing import Optional

from loguru import logger
from playwright.async_api import Page

from flowpilot.automation.checkout import CheckoutStateMachine
from flowpilot.automation.executor import TieredActionExecutor
from flowpilot.automation.handlers import PageHandlers
from flowpilot.automation.llm_client import LLMClient
from flowpilot.automation.llm_models import parse_vision_decision
from flowpilot.automation.payment import PaymentFiller
from flowpilot.automation.registry import HandlerRule, find_handler, is_end_state
from flowpilot.automation.semantic import SemanticActor
from flowpilot.automation.step_cache import StepCache
from flowpilot.automation.vision import VisionAdvisor
from flowpilot.captcha.gate import CaptchaGate
from flowpilot.captcha.solver import CaptchaSolver
from flowpilot.config import Config
from flowpilot.errors import FATAL_ERRORS, StuckFailure
from flowpilot.models import FlowContext, FlowResult, FormData, TestGoals

DEFAULT_OBJECTIVE = (
    "Complete the business formation signup flow through checkout until the order confirmation page"
)

BANKING_ACTION = 'Click on "Apply for Banking" or "Open Bank Account" button'


class FlowDriver:
    """
    Runs one persona through the funnel.

    The driver owns the navigation counters of the ``FlowContext``;
    everything else only appends to its step log.
    """

    def __init__(
        self,
        page: Page,
        config: Config,
        context: FlowContext,
        executor: TieredActionExecutor,
        handlers: PageHandlers,
        captcha_gate: CaptchaGate,
        goals: TestGoals,
        step_cache: Optional[StepCache] = None,
    ):
        self.page = page
        self.config = config
        self.context = context
        self.executor = executor
        self.handlers = handlers
        self.captcha_gate = captcha_gate
        self.goals = goals
        self.step_cache = step_cache
        self.timing = config.timing
        self.max_steps = config.flow.max_steps
        self.thresholds = config.flow.stuck_thresholds
        self.banking_attempted = False

    @classmethod
    def build(
        cls,
        page: Page,
        config: Config,
        data: FormData,
        goals: TestGoals,
        llm: Optional[LLMClient] = None,
        solver: Optional[CaptchaSolver] = None,
        screenshots_dir: Optional[Path] = None,
        step_cache: Optional[StepCache] = None,
    ) -> "FlowDriver":
        """
        Wire the executor, checkout machine, payment filler, handlers and
        gate around a single page.

        Without an ``llm`` the semantic and vision tiers are disabled and
        only direct selectors are used.
        """
        context = FlowContext()
        semantic = SemanticActor(page, llm, config.llm, config.executor) if llm else None
        vision = VisionAdvisor(page, llm, data, config.llm.vision_model) if llm else None
        executor = TieredActionExecutor(page, config, data, context, semantic, vision, screenshots_dir)
        payment = PaymentFiller(page, executor, config)
        checkout = CheckoutStateMachine(page, executor, payment, config, data.persona)
        gate = CaptchaGate(page, config.captcha, solver)
        handlers = PageHandlers(executor, checkout, gate, data, goals, config)
        return cls(page, config, context, executor, handlers, gate, goals, step_cache)

    # ==================== Run ====================

    async def run_flow(self, start_url: str, objective: str = DEFAULT_OBJECTIVE) -> FlowResult:
        """
        Drive the funnel from ``start_url`` to a terminal page.

        Returns:
            FlowResult, also when the run fails
        """
        logger.info(f"🚀 Starting flow at {start_url} (max {self.max_steps} steps)")

        try:
            await self._enter(start_url)

            while self.context.step_count < self.max_steps:
                if await self.step(objective):
                    return self._result(True)

            logger.warning(f"⚠️ Reached maximum steps limit ({self.max_steps} steps)")
            await self._capture_failure()
            return self._result(False, f"Exceeded maximum steps ({self.max_steps})", "MaxStepsExceeded")

        except FATAL_ERRORS as e:
            logger.error(f"❌ Flow aborted: {e}")
            await self._capture_failure()
            return self._result(False, str(e), type(e).__name__)
        except Exception as e:
            logger.exception(f"❌ Flow failed unexpectedly: {e}")
            await self._capture_failure()
            return self._result(False, str(e), type(e).__name__)

    async def _enter(self, start_url: str):
        logger.info(f"🌐 Navigating to: {start_url}")
        await self.page.goto(start_url, wait_until="domcontentloaded",
                             timeout=self.config.browser.navigation_timeout)
        await self.executor.wait(self.timing.navigation)
        await self.captcha_gate.wait_until_clear()

        if not await self.executor.act(self.config.flow.entry_action):
            await self.executor.click_cta()
        await self.executor.wait_for_navigation()
        await self.captcha_gate.wait_until_clear()

    async def step(self, objective: str = DEFAULT_OBJECTIVE) -> bool:
        """
        Run one iteration of the loop.

        Returns:
            True when a terminal page was reached

        Raises:
            StuckFailure: The location stayed the same for too many iterations
        """
        self.context.step_count += 1
        logger.info(f"\n{'=' * 60}")
        logger.info(f"🔄 Step {self.context.step_count}/{self.max_steps}")
        logger.info(f"{'=' * 60}")

        await self.captcha_gate.wait_until_clear()
        await self.executor.close_modals()

        location = self.page.url
        logger.info(f"📍 Location: {location}")

        repeats = self.context.observe_location(location)
        threshold = self.thresholds.for_location(location)
        if repeats > 0:
            logger.info(f"   Same location {repeats}/{threshold}")
        if repeats >= threshold:
            logger.error(f"❌ Stuck on {location} for {repeats} iterations")
            await self.executor.capture("stuck_exit", full_page=True)
            raise StuckFailure(location, repeats, threshold)

        if location in self.context.terminal_locations or is_end_state(location):
            self.context.terminal_locations.add(location)
            if self.goals.apply_for_banking and not self.banking_attempted:
                self.banking_attempted = True
                if await self._apply_for_banking():
                    return False
            await self.executor.capture("order_confirmation", full_page=True)
            logger.success(f"🎉 Reached terminal page: {location}")
            return True

        rule = find_handler(location)
        if rule is None or rule.handler is None:
            await self._handle_unknown(location, objective)
        else:
            await self._dispatch(rule)
        return False

    # ==================== Dispatch ====================

    async def _dispatch(self, rule: HandlerRule):
        logger.info(f"➡️ Handler: {rule.name}")
        start = time.monotonic()
        try:
            await rule.handler(self.handlers, rule.config)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            # The next iteration re-evaluates the page
            logger.warning(f"⚠️ Handler {rule.name} failed: {e}")
            self.context.record(f"handler:{rule.name}", False, int((time.monotonic() - start) * 1000), str(e))
            return
        self.context.record(f"handler:{rule.name}", True, int((time.monotonic() - start) * 1000))

    async def _handle_unknown(self, location: str, objective: str):
        """Replay a cached decision or ask the vision tier what to do."""
        logger.warning(f"⚠️ No handler for {location} - using vision")

        cached = self.step_cache.get(location) if self.step_cache else None
        if cached:
            logger.info("   ♻️ Replaying cached step")
            decision = parse_vision_decision(cached[0])
        else:
            decision = await self.executor.decide_next_action(objective)
        logger.info(f"   👁️ Decision: {decision.action} {decision.target or ''} ({decision.reasoning})")

        outcome = await self.executor.execute_decision(decision)
        if outcome and decision.action in ("fill", "select"):
            await self.executor.click_cta()
        navigated = await self.executor.wait_for_navigation(from_url=location)

        if self.step_cache is None:
            return
        if outcome and navigated:
            self.step_cache.save_success(location, [decision.to_dict()])
        elif cached:
            self.step_cache.mark_failed(location)

    async def _apply_for_banking(self) -> bool:
        logger.info("🏦 Trying the banking application from the confirmation page")
        url_before = self.page.url
        if not await self.executor.act(BANKING_ACTION):
            return False
        return await self.executor.wait_for_navigation(self.timing.payment, from_url=url_before)

    # ==================== Result ====================

    async def _capture_failure(self):
        if self.config.artifacts.screenshot_on_error:
            await self.executor.capture("final_state", full_page=True)

    def _result(self, success: bool, error: Optional[str] = None,
                error_type: Optional[str] = None) -> FlowResult:
        try:
            final_location = self.page.url
        except Exception:
            final_location = self.context.last_location

        result = FlowResult(
            success=success,
            step_count=self.context.step_count,
            final_location=final_location,
            error=error,
            error_type=error_type,
            step_log=[entry.to_dict() for entry in self.context.step_log],
            artifacts=dict(self.context.artifacts),
            captcha_seconds=round(self.captcha_gate.waited_seconds, 2),
            duration_seconds=round(time.time() - self.context.started_at, 2),
        )
        logger.info("\n📊 Flow Summary:")
        logger.info(f"   Success: {result.success}")
        logger.info(f"   Steps: {result.step_count}")
        logger.info(f"   Final location: {result.final_location}")
        if error:
            logger.info(f"   Error: {error_type}: {error}")
        return result
