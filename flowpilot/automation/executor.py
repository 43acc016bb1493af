"""
Tiered action executor.

Fill, click and select are attempted through three fallback tiers and the
first success wins:

1. Direct: try an ordered list of structural selectors and act on the
   first visible and enabled match.
2. Semantic: hand a natural-language instruction to the language model,
   which picks the element on the live page.
3. Vision: ask a vision model what to do from a screenshot, then carry the
   decision out through tiers 1 and 2.

A tier failure never aborts the primitive; it falls through to the next
tier. Callers verify the effect themselves, usually with
``wait_for_navigation``.
"""

import asyncio
import re
import time
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from loguru import logger
from playwright.async_api import Locator, Page

from flowpilot.automation import dom
from flowpilot.automation.llm_models import DEFAULT_VISION_DECISION, VisionDecision
from flowpilot.automation.selectors import (
    CTA_SELECTORS,
    FIELD_SPECS,
    MODAL_CLOSE_SELECTORS,
    resolve_field,
    selectors_for,
    value_for,
)
from flowpilot.automation.semantic import SemanticActor
from flowpilot.automation.vision import VisionAdvisor
from flowpilot.config import Config
from flowpilot.errors import FatalApiFailure, TransientActionFailure
from flowpilot.models import ActionOutcome, ActionTier, FlowContext, FormData


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def text_selectors(label: str) -> List[str]:
    """Selectors for a clickable element identified by its visible text."""
    label = label.replace('"', "'")
    return [
        f'button:has-text("{label}")',
        f'a:has-text("{label}")',
        f'[role="button"]:has-text("{label}")',
        f'label:has-text("{label}")',
    ]


class TieredActionExecutor:
    """
    Fill/click/select primitives with direct, semantic and vision fallbacks.

    Every primitive returns an ``ActionOutcome`` and appends to the run's
    step log. Only ``FatalApiFailure`` escapes a primitive.
    """

    def __init__(
        self,
        page: Page,
        config: Config,
        data: FormData,
        context: FlowContext,
        semantic: Optional[SemanticActor] = None,
        vision: Optional[VisionAdvisor] = None,
        screenshots_dir: Optional[Path] = None,
    ):
        """
        Initialize the executor.

        Args:
            page: Playwright page shared by the whole run
            config: Application configuration
            data: Persona, business and card data used as field values
            context: Run state receiving step log entries and artifacts
            semantic: Semantic tier (disabled when None)
            vision: Vision tier (disabled when None)
            screenshots_dir: Directory for artifacts (screenshots disabled when None)
        """
        self.page = page
        self.data = data
        self.context = context
        self.semantic = semantic
        self.vision = vision
        self.timing = config.timing
        self.settings = config.executor
        self.screenshots_dir = screenshots_dir

    # ==================== Timing ====================

    async def wait(self, ms: int):
        await asyncio.sleep(ms / 1000)

    async def wait_for_navigation(self, timeout_ms: Optional[int] = None,
                                  from_url: Optional[str] = None) -> bool:
        """
        Poll the location until it differs from ``from_url`` (default: the
        current location). Returns False on timeout.
        """
        timeout_ms = self.timing.checkout if timeout_ms is None else timeout_ms
        start_url = from_url or self.page.url
        start = time.monotonic()
        while True:
            await self.wait(self.timing.short)
            if self.page.url != start_url:
                logger.info(f"   🧭 Navigated to: {self.page.url}")
                return True
            if _elapsed_ms(start) >= timeout_ms:
                return False

    # ==================== Tier 1: direct ====================

    async def _first_working(
        self,
        selectors: List[str],
        perform: Callable[[Locator], Awaitable[None]],
        require_enabled: bool = True,
    ) -> Optional[str]:
        """Run ``perform`` on the first visible (and enabled) match. Returns the selector used."""
        for selector in selectors:
            try:
                locator = self.page.locator(selector).first
                if await locator.count() == 0:
                    continue
                if not await locator.is_visible():
                    continue
                if require_enabled and not await locator.is_enabled(timeout=self.settings.lookup_timeout_ms):
                    continue
                await perform(locator)
                return selector
            except Exception as e:
                logger.debug(f"   Selector {selector} failed: {e}")
                continue
        return None

    async def fill_direct(self, field: str, value: Optional[str] = None) -> ActionOutcome:
        """Fill a known field (a key of ``FIELD_SPECS``) through its structural selectors."""
        spec = FIELD_SPECS.get(field)
        if spec is None:
            return ActionOutcome.failed(f"No selectors for field '{field}'", ActionTier.DIRECT)

        value = value or spec.value(self.data)
        if not value:
            return ActionOutcome.failed(f"No value for field '{field}'", ActionTier.DIRECT)

        start = time.monotonic()

        async def perform(locator: Locator):
            await locator.fill(value)

        selector = await self._first_working(spec.selectors, perform)
        if selector is None:
            self.context.record(f"fill_direct:{field}", False, _elapsed_ms(start),
                                "no selector matched", ActionTier.DIRECT)
            logger.debug(f"   ❌ fill_direct {field}: no selector worked")
            return ActionOutcome.failed("no selector matched", ActionTier.DIRECT)

        await self.wait(self.timing.brief)
        self.context.record(f"fill_direct:{field}", True, _elapsed_ms(start), tier=ActionTier.DIRECT)
        logger.info(f"   ✅ Filled {field} via {selector}")
        return ActionOutcome.ok(ActionTier.DIRECT)

    async def click_direct(self, selectors: List[str], label: str = "element") -> ActionOutcome:
        """Click the first visible and enabled match."""
        start = time.monotonic()

        async def perform(locator: Locator):
            await locator.click()

        selector = await self._first_working(selectors, perform)
        if selector is None:
            self.context.record(f"click_direct:{label}", False, _elapsed_ms(start),
                                "no selector matched", ActionTier.DIRECT)
            return ActionOutcome.failed("no selector matched", ActionTier.DIRECT)

        await self.wait(self.timing.brief)
        self.context.record(f"click_direct:{label}", True, _elapsed_ms(start), tier=ActionTier.DIRECT)
        logger.info(f"   ✅ Clicked {label} via {selector}")
        return ActionOutcome.ok(ActionTier.DIRECT)

    async def select_direct(self, value: str, selectors: List[str]) -> ActionOutcome:
        """Select an option by label, then by value. A missing option is a failure."""
        start = time.monotonic()
        timeout = self.settings.select_timeout_ms

        async def perform(locator: Locator):
            try:
                await locator.select_option(label=value, timeout=timeout)
            except Exception:
                await locator.select_option(value=value, timeout=timeout)

        selector = await self._first_working(selectors, perform, require_enabled=False)
        if selector is None:
            self.context.record(f"select_direct:{value}", False, _elapsed_ms(start),
                                "no selector matched", ActionTier.DIRECT)
            return ActionOutcome.failed("no selector matched", ActionTier.DIRECT)

        await self.wait(self.timing.brief)
        self.context.record(f"select_direct:{value}", True, _elapsed_ms(start), tier=ActionTier.DIRECT)
        logger.info(f"   ✅ Selected '{value}' via {selector}")
        return ActionOutcome.ok(ActionTier.DIRECT)

    async def click_cta(self) -> ActionOutcome:
        """Click the page's primary Continue/Next button."""
        outcome = await self.click_direct(CTA_SELECTORS, label="cta")
        if outcome:
            return outcome
        return await self.act("Click the Continue or Next button")

    # ==================== Tier 2: semantic ====================

    async def act(self, instruction: str, max_retries: Optional[int] = None) -> ActionOutcome:
        """
        Carry out a natural-language instruction through the semantic tier.

        Only empty or malformed model responses are retried, with a brief
        pause between attempts. Any other failure is returned at once.
        """
        max_retries = max_retries or self.settings.max_retries
        start = time.monotonic()
        logger.info(f"   🤖 Action: {instruction}")

        if self.semantic is None:
            self.context.record(instruction, False, 0, "semantic tier disabled", ActionTier.SEMANTIC)
            return ActionOutcome.failed("semantic tier disabled", ActionTier.SEMANTIC)

        error = ""
        for attempt in range(1, max_retries + 1):
            try:
                await self.semantic.act(instruction)
                self.context.record(instruction, True, _elapsed_ms(start), tier=ActionTier.SEMANTIC)
                logger.info(f"   ✅ Done ({_elapsed_ms(start)}ms)")
                return ActionOutcome.ok(ActionTier.SEMANTIC)
            except FatalApiFailure:
                raise
            except TransientActionFailure as e:
                error = str(e)
                if attempt < max_retries:
                    logger.warning(f"   ⚠️ Empty response (attempt {attempt}/{max_retries}) - retrying...")
                    await self.wait(self.settings.retry_backoff_ms)
                    continue
            except Exception as e:
                error = str(e)
            break

        logger.warning(f"   ❌ Failed: {error}")
        self.context.record(instruction, False, _elapsed_ms(start), error, ActionTier.SEMANTIC)
        return ActionOutcome.failed(error, ActionTier.SEMANTIC)

    # ==================== Tier 3: vision ====================

    async def decide_next_action(self, objective: str) -> VisionDecision:
        """Ask the vision tier for the next action. Degrades to clicking Continue."""
        if self.vision is None:
            return DEFAULT_VISION_DECISION
        return await self.vision.decide(objective)

    async def execute_decision(self, decision: VisionDecision) -> ActionOutcome:
        """Carry out a vision decision through the direct and semantic tiers."""
        start = time.monotonic()
        if decision.action == "done":
            outcome = ActionOutcome.ok(ActionTier.VISION)
        elif decision.action == "fill" and decision.target and decision.value:
            outcome = await self.fill(decision.target, decision.value, use_vision=False)
        elif decision.action == "select" and decision.target and decision.value:
            outcome = await self.select(decision.target, decision.value, use_vision=False)
        elif decision.action == "click" and decision.target:
            outcome = await self.click(decision.target, use_vision=False)
        else:
            outcome = await self.click_cta()

        self.context.record(f"vision:{decision.action}:{decision.target or ''}", outcome.succeeded,
                            _elapsed_ms(start), outcome.error, ActionTier.VISION)
        if outcome:
            return ActionOutcome.ok(ActionTier.VISION)
        return ActionOutcome.failed(outcome.error or "vision decision failed", ActionTier.VISION)

    async def _vision_fallback(self, objective: str) -> ActionOutcome:
        if self.vision is None:
            return ActionOutcome.failed("vision tier disabled", ActionTier.VISION)
        logger.info(f"   👁️ Falling back to vision: {objective}")
        decision = await self.decide_next_action(objective)
        return await self.execute_decision(decision)

    # ==================== Cascades ====================

    async def fill(self, description: str, value: Optional[str] = None,
                   use_vision: bool = True) -> ActionOutcome:
        """Fill the described field: direct, then semantic, then vision."""
        value = value or value_for(description, self.data)
        if not value:
            logger.warning(f"   ⚠️ Fill: no value for '{description}'")
            return ActionOutcome.failed(f"No value for '{description}'")

        key = resolve_field(description)
        if key is not None:
            outcome = await self.fill_direct(key, value)
        else:
            start = time.monotonic()

            async def perform(locator: Locator):
                await locator.fill(value)

            selector = await self._first_working(selectors_for(description), perform)
            outcome = ActionOutcome.ok(ActionTier.DIRECT) if selector else ActionOutcome.failed("no selector matched")
            self.context.record(f"fill_direct:{description}", outcome.succeeded, _elapsed_ms(start),
                                outcome.error, ActionTier.DIRECT)
        if outcome:
            return outcome

        outcome = await self.act(f'Type "{value}" into the {description} field')
        if outcome or not use_vision:
            return outcome
        return await self._vision_fallback(f'Fill the {description} field with "{value}"')

    async def select(self, description: str, value: str, use_vision: bool = True) -> ActionOutcome:
        """Select an option in the described dropdown: direct, then semantic, then vision."""
        key = resolve_field(description)
        selectors = FIELD_SPECS[key].selectors if key else [f'select[name*="{description.lower()}"]', 'select']
        outcome = await self.select_direct(value, selectors)
        if outcome:
            return outcome

        outcome = await self.act(f'Select "{value}" from the {description} dropdown')
        if outcome:
            return outcome

        # Custom dropdowns need an open-then-pick sequence
        opened = await self.act(f"Click on the {description} dropdown to open it")
        if opened:
            await self.wait(self.timing.medium)
            outcome = await self.act(f'Click on the "{value}" option')
            if outcome:
                return outcome

        if not use_vision:
            return outcome
        return await self._vision_fallback(f'Select "{value}" in the {description} dropdown')

    async def click(self, description: str, selectors: Optional[List[str]] = None,
                    use_vision: bool = True) -> ActionOutcome:
        """Click the described element: direct, then semantic, then vision."""
        outcome = await self.click_direct(selectors or text_selectors(description), label=description)
        if outcome:
            return outcome

        outcome = await self.act(f'Click "{description}"')
        if outcome or not use_vision:
            return outcome
        return await self._vision_fallback(f'Click "{description}"')

    # ==================== Page helpers ====================

    async def has_modal(self) -> bool:
        try:
            return bool(await self.page.evaluate(dom.MODAL_VISIBLE_JS))
        except Exception:
            return False

    async def close_modals(self) -> bool:
        """Close a blocking dialog if one is visible. Returns True when one was dismissed."""
        if not await self.has_modal():
            return False

        logger.info("   🎯 Modal detected, attempting to close...")
        if await self.click_direct(MODAL_CLOSE_SELECTORS, label="modal-close"):
            await self.wait(self.timing.medium)
            return True

        outcome = await self.act("Click the X button or close button in the top-right corner of the dialog to close it")
        if outcome:
            await self.wait(self.timing.medium)
            if not await self.has_modal():
                logger.success("   ✅ Modal closed")
                return True

        try:
            await self.page.keyboard.press("Escape")
            await self.wait(self.timing.brief)
            logger.info("   ⌨️ Pressed Escape to dismiss modal")
            return True
        except Exception as e:
            logger.warning(f"   ❌ Failed to close modal: {e}")
            return False

    async def scroll_to_bottom(self):
        await self.page.evaluate(dom.SCROLL_TO_BOTTOM_JS)

    async def page_text(self) -> str:
        try:
            return await self.page.evaluate(dom.PAGE_TEXT_JS) or ""
        except Exception:
            return ""

    async def capture(self, name: str, full_page: bool = False) -> Optional[str]:
        """Save a screenshot into the run directory and register it as an artifact."""
        if self.screenshots_dir is None:
            return None
        try:
            self.screenshots_dir.mkdir(parents=True, exist_ok=True)
            safe_name = re.sub(r"[^a-z0-9]+", "_", name.lower())
            path = self.screenshots_dir / f"{int(time.time() * 1000)}_{safe_name}.png"
            await self.page.screenshot(path=str(path), full_page=full_page)
            self.context.add_artifact(name, str(path))
            logger.info(f"   📸 Screenshot saved: {path.name}")
            return str(path)
        except Exception as e:
            logger.warning(f"   ⚠️ Screenshot failed: {e}")
            return None
