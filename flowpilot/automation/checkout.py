"""
Checkout section state machine.

The checkout page keeps one location while it cycles through account,
summary and payment sections, so the section is re-derived from the DOM
on every visit. Two consecutive visits to the same section hand control
to the vision tier, since identifying the section correctly does not
mean its sub-action worked. The payment section is the exception once an
order has been submitted: the payment filler owns every later submit.
"""

from typing import Optional

from loguru import logger
from playwright.async_api import Page

from flowpilot.automation import dom
from flowpilot.automation.executor import TieredActionExecutor
from flowpilot.automation.payment import PaymentFiller, PaymentResult, field_for_error
from flowpilot.automation.selectors import CHECKOUT_SELECTORS
from flowpilot.config import Config
from flowpilot.errors import PaymentValidationError
from flowpilot.models import CheckoutSection, Persona

PAYMENT_PHRASES = ["add card details", "payment method", "card number", "mm / yy", "mm/yy"]

CHECKOUT_OBJECTIVE = (
    "Complete the checkout page: create the account password if asked, "
    "continue past the order summary, and place the order with the test card"
)


def classify_section(signals: Optional[dict]) -> CheckoutSection:
    """
    Classify checkout DOM signals.

    An empty visible password field wins over everything else. Payment copy,
    a visible card input, a payment frame or a visible "place order" button
    mean payment. Anything else is the summary.
    """
    if not isinstance(signals, dict):
        return CheckoutSection.UNKNOWN

    if signals.get("password_visible") and signals.get("password_empty"):
        return CheckoutSection.ACCOUNT

    text = (signals.get("text") or "").lower()
    if (
        any(phrase in text for phrase in PAYMENT_PHRASES)
        or signals.get("card_input_visible")
        or signals.get("payment_frames")
        or signals.get("place_order_visible")
    ):
        return CheckoutSection.PAYMENT

    return CheckoutSection.SUMMARY


class CheckoutStateMachine:
    """
    Drives the single-location checkout page one section at a time.

    One instance lives for the whole run so the repeat tracking survives
    between flow iterations.
    """

    def __init__(self, page: Page, executor: TieredActionExecutor, payment: PaymentFiller,
                 config: Config, persona: Persona, escalate_after: int = 2):
        """
        Args:
            page: Playwright page shared by the run
            executor: Tiered action executor
            payment: Payment filler used in the payment section
            config: Application configuration
            persona: Persona whose password is entered in the account section
            escalate_after: Consecutive visits to one section before escalating to vision
        """
        self.page = page
        self.executor = executor
        self.payment = payment
        self.timing = config.timing
        self.persona = persona
        self.escalate_after = escalate_after
        self.last_section: Optional[CheckoutSection] = None
        self.section_attempts = 0
        self.escalations = 0
        self.last_payment: Optional[PaymentResult] = None

    async def detect_section(self) -> CheckoutSection:
        """Inspect the DOM once and classify the visible section."""
        try:
            signals = await self.page.evaluate(dom.CHECKOUT_SIGNALS_JS)
        except Exception as e:
            logger.debug(f"Checkout signal check failed: {e}")
            return CheckoutSection.UNKNOWN
        return classify_section(signals)

    async def handle(self) -> CheckoutSection:
        """Advance the checkout page by one section step and return the section seen."""
        section = await self.detect_section()
        logger.info(f"   🛒 Checkout section: {section.value}")

        if section == CheckoutSection.PAYMENT and self.payment.exhausted:
            # Never hand the payment form to vision once the submission budget is spent
            raise PaymentValidationError(
                f"Payment submission limit reached: {self.payment.last_error}",
                field_for_error(self.payment.last_error),
            )

        if section == self.last_section:
            self.section_attempts += 1
            logger.info(f"   Same section attempt {self.section_attempts}/{self.escalate_after}")
            if self.section_attempts >= self.escalate_after:
                if section == CheckoutSection.PAYMENT and self.payment.submissions:
                    # Vision could press Place Order outside the submission budget
                    logger.info("   Order already submitted - repairing fields instead of escalating")
                else:
                    logger.warning("   ⚠️ Stuck on the same section - escalating to vision")
                    await self.escalate()
                    self.section_attempts = 0
                    return section
        else:
            self.last_section = section
            self.section_attempts = 1

        if section == CheckoutSection.ACCOUNT:
            await self.handle_account()
        elif section == CheckoutSection.SUMMARY:
            await self.handle_summary()
        elif section == CheckoutSection.PAYMENT:
            await self.handle_payment()
        else:
            await self.handle_unknown()
        return section

    # ==================== Sections ====================

    async def handle_account(self):
        """Enter the password only; the email carries over from earlier pages."""
        logger.info("   🔐 Account section - filling password only")
        await self.executor.fill("password", self.persona.password)
        await self.executor.wait(self.timing.medium)

        if not await self.try_submit():
            await self.executor.act('Click "Save and continue" or "Create account" or "Continue" button')
        await self.executor.wait(self.timing.checkout)

    async def handle_summary(self):
        logger.info("   📋 Order summary - moving on to payment")
        await self.executor.scroll_to_bottom()
        await self.executor.wait(self.timing.long)

        if not await self.executor.act('Click "Continue to payment", "Proceed", or "Next" button'):
            await self.executor.click_cta()
        await self.executor.wait(self.timing.navigation)

    async def handle_payment(self):
        logger.info("   💳 Payment section")
        try:
            await self.page.evaluate(dom.SCROLL_TO_PAYMENT_JS)
        except Exception as e:
            logger.debug(f"Scroll to payment failed: {e}")
        await self.executor.wait(self.timing.long)

        self.last_payment = await self.payment.fill_and_submit()
        if not self.last_payment.success:
            error = self.last_payment.error or "payment failed"
            raise PaymentValidationError(error, field_for_error(self.last_payment.error))

    async def handle_unknown(self):
        logger.info("   ❓ Unknown checkout section - asking vision")
        decision = await self.executor.decide_next_action(CHECKOUT_OBJECTIVE)
        if decision.action in ("fill", "select", "click") and decision.target:
            await self.executor.execute_decision(decision)
            if decision.action == "fill":
                await self.try_submit()
        else:
            await self.executor.scroll_to_bottom()
            await self.try_submit()
        await self.executor.wait(self.timing.checkout)

    async def escalate(self):
        """Let the vision tier decide, whatever the nominal section is."""
        self.escalations += 1
        decision = await self.executor.decide_next_action(CHECKOUT_OBJECTIVE)
        if decision.action in ("fill", "select", "click") and decision.target:
            await self.executor.execute_decision(decision)
        else:
            await self.executor.scroll_to_bottom()
            await self.executor.wait(self.timing.medium)
            await self.executor.act(
                "Click the most prominent button to continue (e.g., Save and continue, Place Order, Continue, Submit)"
            )
        await self.executor.wait(self.timing.checkout)

    async def try_submit(self) -> bool:
        return bool(await self.executor.click_direct(CHECKOUT_SELECTORS, label="checkout-submit"))
