"""
Payment filler for card forms hosted in embedded payment frames.

Card, expiry, CVC and ZIP are entered through a cascade of strategies:

1. Placeholder text inside any embedded frame
2. Stable field-name attribute inside any embedded frame
3. Per-frame iteration, routing by each frame's input placeholder
4. Keyboard entry with Tab between fields, only when no frame is present

The order is only submitted once all four fields were entered. After
submitting, a location change or confirmation copy counts as success; a
validation error re-enters just the offending field. One filler lives for
the whole run, so its submission budget spans every checkout visit.
"""

from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger
from playwright.async_api import Page

from flowpilot.automation import dom
from flowpilot.automation.executor import TieredActionExecutor
from flowpilot.automation.selectors import CHECKOUT_SELECTORS, FIELD_SPECS
from flowpilot.config import Config

CARD = "card"
EXPIRY = "expiry"
CVC = "cvc"
ZIP = "zip"
PAYMENT_FIELDS = (CARD, EXPIRY, CVC, ZIP)

FIELD_LABELS = {CARD: "card number", EXPIRY: "expiration date", CVC: "CVC", ZIP: "ZIP code"}

PLACEHOLDER_SELECTORS: Dict[str, List[str]] = {
    CARD: ['[placeholder="Card number"]'],
    EXPIRY: ['[placeholder="MM / YY"]', '[placeholder="MM/YY"]'],
    CVC: ['[placeholder="CVC"]', '[placeholder="CVV"]'],
    ZIP: ['[placeholder="ZIP"]'],
}

STABLE_NAME_SELECTORS: Dict[str, List[str]] = {
    CARD: ['[data-elements-stable-field-name="cardNumber"]'],
    EXPIRY: ['[data-elements-stable-field-name="cardExpiry"]'],
    CVC: ['[data-elements-stable-field-name="cardCvc"]'],
    ZIP: ['[data-elements-stable-field-name="postalCode"]'],
}

PAYMENT_FRAME_SELECTOR = 'iframe[name^="__privateStripeFrame"]'

OUTSIDE_ZIP_SELECTORS = [
    'input[placeholder*="ZIP"]',
    'input[placeholder*="Postal"]',
    'input[autocomplete="postal-code"]',
]

# (text on the page, normalized message)
VALIDATION_MESSAGES = [
    ("invalid card number", "Invalid card number"),
    ("invalid expiration", "Invalid expiration date"),
    ("invalid cvv", "Invalid CVV"),
    ("invalid cvc", "Invalid CVV"),
    ("invalid zip", "Invalid zip code"),
    ("invalid postal", "Invalid zip code"),
    ("card number is required", "Card number required"),
    ("expiration is required", "Expiration required"),
    ("cvv is required", "CVV required"),
    ("cvc is required", "CVV required"),
    ("zip is required", "Zip code required"),
    ("postal is required", "Zip code required"),
]

CONFIRMATION_PHRASES = [
    "congrats",
    "congratulations",
    "order has been placed",
    "order confirmed",
    "thank you for your order",
    "your foundation is set",
    "welcome to the club",
]


def field_for_placeholder(placeholder: Optional[str]) -> Optional[str]:
    """Route a frame input to a payment field by its placeholder."""
    if not placeholder:
        return None
    p = placeholder.lower()
    if "card" in p:
        return CARD
    if "mm" in p or "exp" in p:
        return EXPIRY
    if "cvc" in p or "cvv" in p:
        return CVC
    if "zip" in p or "postal" in p:
        return ZIP
    return None


def field_for_error(error: Optional[str]) -> Optional[str]:
    """Resolve which field a validation message refers to."""
    if not error:
        return None
    e = error.lower()
    if "expir" in e:
        return EXPIRY
    if "cvv" in e or "cvc" in e or "security code" in e:
        return CVC
    if "zip" in e or "postal" in e:
        return ZIP
    if "card" in e:
        return CARD
    return None


def match_validation_error(signals: Optional[dict]) -> Optional[str]:
    """Pick the validation message out of the page text and error-styled elements."""
    if not signals:
        return None
    text = signals.get("text") or ""
    for needle, message in VALIDATION_MESSAGES:
        if needle in text:
            return message
    for candidate in signals.get("errors") or []:
        if candidate and len(candidate) < 100:
            return candidate
    return None


def has_confirmation_copy(text: Optional[str]) -> bool:
    text = (text or "").lower()
    return any(phrase in text for phrase in CONFIRMATION_PHRASES)


class PaymentResult:
    """Outcome of a fill-and-submit run."""

    def __init__(self, success: bool, attempts: int, filled: Set[str], error: Optional[str] = None):
        self.success = success
        self.attempts = attempts
        self.filled = filled
        self.error = error

    def __bool__(self) -> bool:
        return self.success


class PaymentFiller:
    """
    Fills and submits the card form, repairing individual fields on validation errors.
    """

    def __init__(self, page: Page, executor: TieredActionExecutor, config: Config):
        self.page = page
        self.executor = executor
        self.timing = config.timing
        self.max_attempts = config.payment.max_attempts
        self.processing_grace_ms = config.payment.processing_grace_ms
        self.typing_delay = config.executor.typing_delay_ms
        card = config.payment.card
        self.values = {
            CARD: card.number,
            EXPIRY: card.expiry,
            CVC: card.cvc,
            ZIP: card.zip,
        }
        self.keyboard_values = dict(self.values, **{EXPIRY: f"{card.expiry_month}{card.expiry_year}"})
        self.submissions = 0
        self.entered: Set[str] = set()
        self.last_error: Optional[str] = None

    # ==================== Entry ====================

    @property
    def exhausted(self) -> bool:
        return self.submissions >= self.max_attempts

    def _result(self, success: bool, error: Optional[str] = None) -> PaymentResult:
        return PaymentResult(success, self.submissions, set(self.entered), error)

    async def fill_and_submit(self) -> PaymentResult:
        """
        Enter the card fields and submit, repairing single fields on validation errors.

        State is kept across checkout visits: fields are entered in full only
        once, a later visit repairs just the field named by a visible error,
        and the run never submits more than ``max_attempts`` times in total.
        """
        if self.exhausted:
            logger.error(f"❌ Payment submission limit reached ({self.max_attempts}). Not submitting again.")
            return self._result(False, f"Payment submission limit reached: {self.last_error}")

        missing = [f for f in PAYMENT_FIELDS if f not in self.entered]
        if missing:
            logger.info("💳 Filling payment details...")
            self.entered |= await self.enter_fields(missing)
            missing = [f for f in PAYMENT_FIELDS if f not in self.entered]
            if missing:
                logger.error(f"❌ Payment fields not filled: {missing}. Not submitting.")
                return self._result(False, f"Payment fields incomplete: {', '.join(missing)}")
            await self.executor.capture("payment_fields_filled")
        else:
            error = await self.read_validation_error()
            if error:
                # Back on the form after a rejected submit
                self.last_error = error
                if not await self.repair(error):
                    return self._result(False, error)

        while not self.exhausted:
            url_before = self.page.url
            logger.info(f"   🧾 Submitting order (attempt {self.submissions + 1}/{self.max_attempts})")
            await self.submit()

            status, error = await self.check_outcome(url_before)
            if status == "pending":
                # Neither an error nor a navigation: give processing a grace period, then re-check once
                await self.executor.wait(self.processing_grace_ms)
                status, error = await self.check_outcome(url_before)

            if status == "confirmed":
                logger.success(f"✅ Payment accepted after {self.submissions} attempt(s)")
                return self._result(True)

            if status == "error":
                self.last_error = error
                logger.warning(f"   ⚠️ Validation error: {error}")
                if self.exhausted:
                    break
                if not await self.repair(error):
                    return self._result(False, error)
            else:
                self.last_error = "No confirmation or validation error after submit"
                logger.warning(f"   ⚠️ {self.last_error}")

        logger.error(f"❌ Payment failed after {self.submissions} attempts: {self.last_error}")
        return self._result(False, self.last_error)

    async def repair(self, error: Optional[str]) -> bool:
        """Re-enter only the field a validation error names. False when nothing was re-entered."""
        field = field_for_error(error)
        if field is None:
            logger.warning(f"   ⚠️ Cannot tell which field '{error}' refers to - not resubmitting")
            return False

        logger.info(f"   🔧 Re-entering {FIELD_LABELS[field]} only")
        if field not in await self.enter_fields([field]):
            logger.warning(f"   ⚠️ Could not re-enter {FIELD_LABELS[field]} - not resubmitting")
            return False
        return True

    async def enter_fields(self, fields: Iterable[str]) -> Set[str]:
        """Run the strategy cascade for the requested fields. Returns the fields entered."""
        wanted = list(fields)
        filled: Set[str] = set()

        frame_access = await self._has_payment_frames()
        if frame_access:
            for strategy in (self._fill_by_placeholder, self._fill_by_stable_name, self._fill_per_frame):
                missing = [f for f in wanted if f not in filled]
                if not missing:
                    break
                filled |= await strategy(missing)

        if ZIP in wanted and ZIP not in filled:
            if await self._fill_outside_zip():
                filled.add(ZIP)

        missing = [f for f in wanted if f not in filled]
        if missing and frame_access:
            filled |= await self._fill_semantic(missing)
        elif missing:
            filled |= await self._fill_by_keyboard(missing)

        logger.info(f"   💳 Entered payment fields: {sorted(filled)}")
        return filled

    # ==================== Strategies ====================

    async def _has_payment_frames(self) -> bool:
        try:
            count = await self.page.evaluate(dom.PAYMENT_FRAME_COUNT_JS)
        except Exception:
            count = 0
        return bool(count) or len(self._embedded_frames()) > 0

    def _embedded_frames(self) -> list:
        return [frame for frame in self.page.frames if frame != self.page.main_frame]

    async def _fill_in_frames(self, selector_map: Dict[str, List[str]], fields: List[str],
                              strategy: str) -> Set[str]:
        filled: Set[str] = set()
        for frame in self._embedded_frames():
            for field in fields:
                if field in filled:
                    continue
                for selector in selector_map[field]:
                    try:
                        locator = frame.locator(selector).first
                        if await locator.count() == 0:
                            continue
                        await locator.fill(self.values[field])
                        filled.add(field)
                        logger.info(f"   ✅ Filled {FIELD_LABELS[field]} via {strategy}")
                        break
                    except Exception as e:
                        logger.debug(f"   {strategy} {selector} failed: {e}")
        return filled

    async def _fill_by_placeholder(self, fields: List[str]) -> Set[str]:
        return await self._fill_in_frames(PLACEHOLDER_SELECTORS, fields, "placeholder")

    async def _fill_by_stable_name(self, fields: List[str]) -> Set[str]:
        return await self._fill_in_frames(STABLE_NAME_SELECTORS, fields, "stable field name")

    async def _fill_per_frame(self, fields: List[str]) -> Set[str]:
        filled: Set[str] = set()
        try:
            count = await self.page.locator(PAYMENT_FRAME_SELECTOR).count()
        except Exception:
            return filled

        for i in range(count):
            try:
                field_input = self.page.frame_locator(PAYMENT_FRAME_SELECTOR).nth(i).locator("input").first
                field = field_for_placeholder(await field_input.get_attribute("placeholder"))
                if field is None or field not in fields or field in filled:
                    continue
                await field_input.fill(self.values[field])
                filled.add(field)
                logger.info(f"   ✅ Filled {FIELD_LABELS[field]} via frame #{i}")
            except Exception as e:
                logger.debug(f"   Payment frame #{i} failed: {e}")
        return filled

    async def _fill_outside_zip(self) -> bool:
        for selector in OUTSIDE_ZIP_SELECTORS:
            try:
                locator = self.page.locator(selector).first
                if await locator.count() == 0 or not await locator.is_visible():
                    continue
                await locator.fill(self.values[ZIP])
                logger.info("   ✅ Filled ZIP outside the payment frames")
                return True
            except Exception as e:
                logger.debug(f"   ZIP entry via {selector} failed: {e}")
        return False

    async def _fill_semantic(self, fields: List[str]) -> Set[str]:
        filled: Set[str] = set()
        for field in fields:
            outcome = await self.executor.act(
                f'Type "{self.values[field]}" into the {FIELD_LABELS[field]} field'
            )
            if outcome:
                filled.add(field)
        return filled

    async def _focus_card_field(self) -> bool:
        outcome = await self.executor.click_direct(FIELD_SPECS["card_number"].selectors, label="card-focus")
        if outcome:
            return True
        return bool(await self.executor.act("Click on the card number field"))

    async def _fill_by_keyboard(self, fields: List[str]) -> Set[str]:
        """Type card details with Tab between fields. Used only without frame access."""
        keyboard = self.page.keyboard
        if CARD in fields and len(fields) > 1:
            if not await self._focus_card_field():
                return set()
            try:
                await keyboard.press("Control+a")
                await keyboard.type(self.keyboard_values[CARD], delay=self.typing_delay)
                for field in (EXPIRY, CVC, ZIP):
                    await keyboard.press("Tab")
                    await self.executor.wait(self.timing.short)
                    await keyboard.press("Control+a")
                    await keyboard.type(self.keyboard_values[field], delay=self.typing_delay)
                logger.info("   ⌨️ Entered card details with the keyboard")
                return set(PAYMENT_FIELDS)
            except Exception as e:
                logger.warning(f"   ⚠️ Keyboard entry failed: {e}")
                return set()

        # Targeted re-entry of individual fields
        filled: Set[str] = set()
        for field in fields:
            if field == CARD:
                focused = await self._focus_card_field()
            else:
                focused = bool(await self.executor.act(f"Click on the {FIELD_LABELS[field]} field"))
            if not focused:
                continue
            try:
                await keyboard.press("Control+a")
                await keyboard.type(self.keyboard_values[field], delay=self.typing_delay)
                filled.add(field)
            except Exception as e:
                logger.debug(f"   Keyboard entry for {field} failed: {e}")
        return filled

    # ==================== Submit and verify ====================

    async def submit(self):
        """Scroll to the order button and press it."""
        self.submissions += 1
        await self.executor.wait(self.timing.long)
        try:
            await self.page.evaluate(dom.SCROLL_TO_PAYMENT_JS)
        except Exception as e:
            logger.debug(f"Scroll to payment failed: {e}")
        await self.executor.wait(self.timing.brief)

        if not await self.executor.click_direct(CHECKOUT_SELECTORS, label="place-order"):
            await self.executor.act('Click "Place Order" or "Complete Purchase" or "Submit" button')
        await self.executor.wait(self.timing.payment)

    async def read_validation_error(self) -> Optional[str]:
        try:
            signals = await self.page.evaluate(dom.VALIDATION_SIGNALS_JS)
        except Exception:
            return None
        return match_validation_error(signals)

    async def check_outcome(self, url_before: str) -> Tuple[str, Optional[str]]:
        """Classify the page after a submit as confirmed, error or pending."""
        url_after = self.page.url
        if url_after != url_before or "confirmation" in url_after:
            return "confirmed", None
        if has_confirmation_copy(await self.executor.page_text()):
            return "confirmed", None
        error = await self.read_validation_error()
        if error:
            return "error", error
        return "pending", None
