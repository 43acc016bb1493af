"""
Page handlers: one coroutine per funnel step.

Each handler advances its page with the tiered executor and then waits
for navigation. Handlers only append to the step log; navigation state
belongs to the flow driver.
"""

from typing import Optional

from loguru import logger

from flowpilot.automation.checkout import CheckoutStateMachine
from flowpilot.automation.executor import TieredActionExecutor, text_selectors
from flowpilot.automation.selectors import (
    COUNTY_SELECTORS,
    FIELD_SPECS,
    PACKAGE_CONTINUE_SELECTORS,
    UPSELL_ACCEPT_SELECTORS,
    UPSELL_DECLINE_SELECTORS,
    package_selectors,
)
from flowpilot.captcha.gate import CaptchaGate
from flowpilot.config import Config
from flowpilot.models import FormData, TestGoals, UpsellConfig

GENERIC_UPSELL = UpsellConfig()


class PageHandlers:
    """
    Handlers for every known step of the signup funnel.

    All handlers share the signature ``(self, config=None)`` so routing
    rules can reference them directly.
    """

    def __init__(self, executor: TieredActionExecutor, checkout: CheckoutStateMachine,
                 captcha_gate: CaptchaGate, data: FormData, goals: TestGoals, config: Config):
        self.executor = executor
        self.checkout = checkout
        self.captcha_gate = captcha_gate
        self.data = data
        self.persona = data.persona
        self.goals = goals
        self.timing = config.timing

    async def _advance(self):
        await self.executor.click_cta()
        await self.executor.wait_for_navigation()

    # ==================== Business details ====================

    async def handle_business_state(self, config: Optional[UpsellConfig] = None):
        logger.info(f"   🗺️ Business state page - selecting {self.persona.state}")
        outcome = await self.executor.select_direct(self.persona.state, FIELD_SPECS["state"].selectors)
        if not outcome:
            await self.executor.select("state", self.persona.state)
        await self.executor.wait(self.timing.long)

        if not await self._select_county():
            await self.executor.act("If there is a county dropdown visible, select the first available option")
            await self.executor.wait(self.timing.medium)

        await self._advance()

    async def _select_county(self) -> bool:
        """Pick the first real option of a county dropdown, when one is shown."""
        for selector in COUNTY_SELECTORS:
            try:
                locator = self.executor.page.locator(selector).first
                if await locator.count() == 0 or not await locator.is_visible():
                    continue
                await locator.select_option(index=1)
                logger.info(f"   ✅ County selected via {selector}")
                return True
            except Exception as e:
                logger.debug(f"   County selector {selector} failed: {e}")
        return False

    async def handle_business_name(self, config: Optional[UpsellConfig] = None):
        logger.info("   🏷️ Business name page")
        await self.executor.fill("business name", self.data.business.business_name)
        await self._advance()

    async def handle_contact_info(self, config: Optional[UpsellConfig] = None):
        logger.info("   📇 Contact info page")
        fields = {
            "first_name": "first name",
            "last_name": "last name",
            "email": "email",
            "phone": "phone",
        }
        for key, description in fields.items():
            if not await self.executor.fill_direct(key):
                await self.executor.fill(description)
        await self._advance()

    async def handle_existing_business(self, config: Optional[UpsellConfig] = None):
        logger.info("   ❔ Existing business question")
        outcome = await self.executor.act('Click "No" or the option indicating this is a new business')
        if not outcome:
            await self.executor.click_direct(text_selectors("No"), label="no")
        await self._advance()

    async def handle_business_experience(self, config: Optional[UpsellConfig] = None):
        logger.info("   📈 Business experience page")
        await self.executor.act('Click the first option or "Just getting started" or similar beginner option')
        await self._advance()

    async def handle_industry(self, config: Optional[UpsellConfig] = None):
        logger.info("   🏭 Industry page - skipping")
        await self.executor.click("Skip for now", selectors=text_selectors("Skip for now") + text_selectors("Skip"))
        await self.executor.wait_for_navigation()

    # ==================== Account and package ====================

    async def handle_account_creation(self, config: Optional[UpsellConfig] = None):
        logger.info("   👤 Account creation page")
        if not await self.executor.fill_direct("email"):
            await self.executor.fill("email", self.persona.email)
        if not await self.executor.fill_direct("password"):
            await self.executor.fill("password", self.persona.password)

        await self._advance()
        await self.captcha_gate.wait_until_clear()

    async def handle_package_selection(self, config: Optional[UpsellConfig] = None):
        package = self.goals.package_preference.upper()
        logger.info(f"   📦 Package selection - selecting {package}")
        if not await self._select_package(package):
            await self.executor.act(f'Click on the "{package}" package option, then click Continue or Select')
        await self.executor.wait_for_navigation()

    async def _select_package(self, package: str) -> bool:
        outcome = await self.executor.click_direct(package_selectors(package), label=f"package:{package}")
        if not outcome:
            return False
        await self.executor.wait(self.timing.medium)
        await self.executor.click_direct(PACKAGE_CONTINUE_SELECTORS, label="package-continue")
        return True

    # ==================== Upsells ====================

    async def handle_upsell(self, config: Optional[UpsellConfig] = None):
        """Accept or decline an add-on offer according to the test goals."""
        config = config or GENERIC_UPSELL
        accept = self.goals.should_accept(config.upsell_key, config.default_accept)
        logger.info(f"   🛍️ {config.label} upsell - {'ACCEPTING' if accept else 'DECLINING'}")

        if accept:
            outcome = await self.executor.click_direct(UPSELL_ACCEPT_SELECTORS, label="upsell-accept")
            if not outcome:
                await self.executor.act(
                    'Click the primary black button to accept (may say "Yes", "Add", "Appoint", "Keep me covered")'
                )
        else:
            outcome = await self.executor.click_direct(UPSELL_DECLINE_SELECTORS, label="upsell-decline")
            if not outcome:
                await self.executor.act(
                    'Click the secondary white/outline button to decline '
                    '(may say "No", "Skip", "figure it out myself", "appoint someone else")'
                )
        await self.executor.wait_for_navigation()

    # ==================== Checkout and after ====================

    async def handle_checkout(self, config: Optional[UpsellConfig] = None):
        await self.checkout.handle()

    async def handle_banking_application(self, config: Optional[UpsellConfig] = None):
        logger.info("   🏦 Banking application page")
        address = self.persona.address
        await self.executor.fill("business name", self.data.business.business_name)
        await self.executor.fill("email", self.persona.email)
        await self.executor.fill("phone", self.persona.phone)
        await self.executor.fill("address", address.street)
        await self.executor.fill("city", address.city)
        await self.executor.fill("zip", address.zip)
        if not await self.executor.act("Click Submit or Continue"):
            await self.executor.click_cta()
        await self.executor.wait_for_navigation()
