"""Payment filler: completeness gate, bounded submissions and targeted repair."""

import pytest

from conftest import FakeElement, FakeFrame, FakePage, FakeSemantic, navigate_to
from flowpilot.automation import dom
from flowpilot.automation.executor import TieredActionExecutor
from flowpilot.automation.payment import (
    CARD,
    CVC,
    EXPIRY,
    PAYMENT_FIELDS,
    PAYMENT_FRAME_SELECTOR,
    ZIP,
    PaymentFiller,
    field_for_error,
    field_for_placeholder,
    match_validation_error,
)


def make_filler(page, config, form_data, context, semantic=None):
    executor = TieredActionExecutor(page, config, form_data, context, semantic)
    return PaymentFiller(page, executor, config)


@pytest.mark.parametrize("error, field", [
    ("Invalid expiration date", EXPIRY),
    ("Invalid CVV", CVC),
    ("Your card's security code is incomplete", CVC),
    ("Invalid zip code", ZIP),
    ("Postal code required", ZIP),
    ("Invalid card number", CARD),
    ("Something went wrong", None),
    (None, None),
])
def test_field_for_error(error, field):
    assert field_for_error(error) == field


@pytest.mark.parametrize("placeholder, field", [
    ("Card number", CARD),
    ("MM / YY", EXPIRY),
    ("CVC", CVC),
    ("ZIP", ZIP),
    ("Name on card", CARD),
    ("", None),
])
def test_field_for_placeholder(placeholder, field):
    assert field_for_placeholder(placeholder) == field


def test_match_validation_error_prefers_known_messages():
    assert match_validation_error({"text": "oops: invalid cvc", "errors": ["Field error"]}) == "Invalid CVV"
    assert match_validation_error({"text": "", "errors": ["Card was declined"]}) == "Card was declined"
    assert match_validation_error({"text": "", "errors": ["x" * 150]}) is None
    assert match_validation_error(None) is None


@pytest.mark.asyncio
async def test_never_submits_with_missing_fields(config, form_data, context):
    page = FakePage()
    filler = make_filler(page, config, form_data, context)

    result = await filler.fill_and_submit()

    assert not result.success
    assert result.attempts == 0
    assert filler.submissions == 0
    assert "incomplete" in result.error


@pytest.mark.asyncio
async def test_repeated_validation_error_stops_after_three_submissions(config, form_data, context):
    page = FakePage(
        url="https://app.test/checkout",
        elements={'input[name*="card"]': FakeElement(), 'button:has-text("Place Order")': FakeElement()},
        scripts={
            dom.VALIDATION_SIGNALS_JS: {"text": "invalid cvc", "errors": []},
            dom.PAGE_TEXT_JS: "",
        },
    )
    filler = make_filler(page, config, form_data, context, FakeSemantic(page))

    result = await filler.fill_and_submit()

    assert not result.success
    assert result.attempts == 3
    assert filler.submissions == 3
    assert filler.exhausted
    assert result.error == "Invalid CVV"
    assert result.filled == set(PAYMENT_FIELDS)
    assert page.clicked.count('button:has-text("Place Order")') == 3
    # Full entry once, then only the CVC before each resubmit
    assert page.keyboard.typed.count("4242424242424242") == 1
    assert "1228" in page.keyboard.typed
    assert page.keyboard.typed.count("123") == 3


@pytest.mark.asyncio
async def test_unrepairable_error_is_not_resubmitted(config, form_data, context):
    page = FakePage(
        url="https://app.test/checkout",
        elements={'input[name*="card"]': FakeElement(), 'button:has-text("Place Order")': FakeElement()},
        scripts={
            dom.VALIDATION_SIGNALS_JS: {"text": "invalid cvc", "errors": []},
            dom.PAGE_TEXT_JS: "",
        },
    )
    # Without a semantic tier the CVC field cannot be focused again
    filler = make_filler(page, config, form_data, context)

    result = await filler.fill_and_submit()

    assert not result.success
    assert result.error == "Invalid CVV"
    assert filler.submissions == 1
    assert page.clicked.count('button:has-text("Place Order")') == 1


@pytest.mark.asyncio
async def test_unknown_error_is_not_resubmitted(config, form_data, context, monkeypatch):
    page = FakePage(url="https://app.test/checkout")
    filler = make_filler(page, config, form_data, context)
    entered = []

    async def fake_enter(fields):
        entered.append(list(fields))
        return set(fields)

    async def fake_submit():
        filler.submissions += 1

    async def fake_outcome(url_before):
        return "error", "Something went wrong"

    monkeypatch.setattr(filler, "enter_fields", fake_enter)
    monkeypatch.setattr(filler, "submit", fake_submit)
    monkeypatch.setattr(filler, "check_outcome", fake_outcome)

    result = await filler.fill_and_submit()

    assert not result.success
    assert result.error == "Something went wrong"
    assert filler.submissions == 1
    assert entered == [list(PAYMENT_FIELDS)]


@pytest.mark.asyncio
async def test_exhausted_filler_does_not_submit_again(config, form_data, context):
    page = FakePage(
        url="https://app.test/checkout",
        elements={'input[name*="card"]': FakeElement(), 'button:has-text("Place Order")': FakeElement()},
        scripts={
            dom.VALIDATION_SIGNALS_JS: {"text": "invalid cvc", "errors": []},
            dom.PAGE_TEXT_JS: "",
        },
    )
    filler = make_filler(page, config, form_data, context, FakeSemantic(page))
    await filler.fill_and_submit()
    typed = list(page.keyboard.typed)

    result = await filler.fill_and_submit()

    assert not result.success
    assert "limit reached" in result.error
    assert filler.submissions == 3
    assert page.keyboard.typed == typed


@pytest.mark.asyncio
async def test_later_visit_repairs_only_the_named_field(config, form_data, context, monkeypatch):
    page = FakePage(url="https://app.test/checkout")
    filler = make_filler(page, config, form_data, context)
    entered = []
    state = {"repairs_work": False, "visible_error": None}
    outcomes = [("error", "Invalid CVV"), ("confirmed", None)]

    async def fake_enter(fields):
        fields = list(fields)
        entered.append(fields)
        if len(fields) == 1 and not state["repairs_work"]:
            return set()
        return set(fields)

    async def fake_submit():
        filler.submissions += 1

    async def fake_outcome(url_before):
        return outcomes.pop(0)

    async def fake_error():
        return state["visible_error"]

    monkeypatch.setattr(filler, "enter_fields", fake_enter)
    monkeypatch.setattr(filler, "submit", fake_submit)
    monkeypatch.setattr(filler, "check_outcome", fake_outcome)
    monkeypatch.setattr(filler, "read_validation_error", fake_error)

    first = await filler.fill_and_submit()
    assert not first.success
    assert filler.submissions == 1

    state["repairs_work"] = True
    state["visible_error"] = "Invalid zip code"
    second = await filler.fill_and_submit()

    assert second.success
    assert second.attempts == 2
    assert entered == [list(PAYMENT_FIELDS), [CVC], [ZIP]]


@pytest.mark.asyncio
async def test_validation_error_reenters_only_that_field(config, form_data, context, monkeypatch):
    page = FakePage(url="https://app.test/checkout")
    filler = make_filler(page, config, form_data, context)
    entered = []
    outcomes = [("error", "Invalid zip code"), ("confirmed", None)]

    async def fake_enter(fields):
        entered.append(list(fields))
        return set(fields)

    async def fake_submit():
        filler.submissions += 1

    async def fake_outcome(url_before):
        return outcomes.pop(0)

    monkeypatch.setattr(filler, "enter_fields", fake_enter)
    monkeypatch.setattr(filler, "submit", fake_submit)
    monkeypatch.setattr(filler, "check_outcome", fake_outcome)

    result = await filler.fill_and_submit()

    assert result.success
    assert result.attempts == 2
    assert entered == [list(PAYMENT_FIELDS), [ZIP]]


@pytest.mark.asyncio
async def test_pending_outcome_is_rechecked_once(config, form_data, context, monkeypatch):
    page = FakePage(url="https://app.test/checkout")
    filler = make_filler(page, config, form_data, context)
    outcomes = [("pending", None), ("confirmed", None)]

    async def fake_enter(fields):
        return set(fields)

    async def fake_submit():
        filler.submissions += 1

    async def fake_outcome(url_before):
        return outcomes.pop(0)

    monkeypatch.setattr(filler, "enter_fields", fake_enter)
    monkeypatch.setattr(filler, "submit", fake_submit)
    monkeypatch.setattr(filler, "check_outcome", fake_outcome)

    result = await filler.fill_and_submit()

    assert result.success
    assert filler.submissions == 1


@pytest.mark.asyncio
async def test_location_change_after_submit_confirms(config, form_data, context):
    page = FakePage(
        url="https://app.test/checkout",
        elements={
            'input[name*="card"]': FakeElement(),
            'button:has-text("Place Order")': FakeElement(on_click=navigate_to("https://app.test/thank-you")),
        },
    )
    filler = make_filler(page, config, form_data, context)

    result = await filler.fill_and_submit()

    assert result.success
    assert result.attempts == 1
    assert 'button:has-text("Place Order")' in page.clicked


@pytest.mark.asyncio
async def test_confirmation_copy_confirms_without_navigation(config, form_data, context):
    page = FakePage(
        url="https://app.test/checkout",
        scripts={dom.PAGE_TEXT_JS: "congratulations! your order has been placed"},
    )
    filler = make_filler(page, config, form_data, context)

    assert await filler.check_outcome("https://app.test/checkout") == ("confirmed", None)


def card_frame(*selectors, placeholder=None):
    return FakeFrame({selector: FakeElement(placeholder=placeholder) for selector in selectors})


@pytest.mark.asyncio
async def test_placeholder_strategy_fills_inside_frames(config, form_data, context):
    frame = card_frame('[placeholder="Card number"]', '[placeholder="MM / YY"]', '[placeholder="CVC"]', '[placeholder="ZIP"]')
    page = FakePage(frames=[frame])
    filler = make_filler(page, config, form_data, context)

    filled = await filler.enter_fields(PAYMENT_FIELDS)

    assert filled == set(PAYMENT_FIELDS)
    assert frame.filled == {
        '[placeholder="Card number"]': "4242424242424242",
        '[placeholder="MM / YY"]': "12/28",
        '[placeholder="CVC"]': "123",
        '[placeholder="ZIP"]': "78701",
    }
    assert page.keyboard.typed == []


@pytest.mark.asyncio
async def test_stable_name_strategy_fills_what_placeholders_missed(config, form_data, context):
    card = card_frame('[placeholder="Card number"]', '[data-elements-stable-field-name="cardNumber"]')
    rest = card_frame(
        '[data-elements-stable-field-name="cardExpiry"]',
        '[data-elements-stable-field-name="cardCvc"]',
        '[data-elements-stable-field-name="postalCode"]',
    )
    page = FakePage(frames=[card, rest])
    filler = make_filler(page, config, form_data, context)

    filled = await filler.enter_fields(PAYMENT_FIELDS)

    assert filled == set(PAYMENT_FIELDS)
    assert card.filled == {'[placeholder="Card number"]': "4242424242424242"}
    assert rest.filled == {
        '[data-elements-stable-field-name="cardExpiry"]': "12/28",
        '[data-elements-stable-field-name="cardCvc"]': "123",
        '[data-elements-stable-field-name="postalCode"]': "78701",
    }


@pytest.mark.asyncio
async def test_per_frame_strategy_routes_by_input_placeholder(config, form_data, context):
    frames = [
        card_frame("input", placeholder="Card number"),
        card_frame("input", placeholder="MM / YY"),
        card_frame("input", placeholder="CVC"),
        card_frame("input", placeholder="ZIP"),
    ]
    page = FakePage(frames=frames, counts={PAYMENT_FRAME_SELECTOR: len(frames)})
    filler = make_filler(page, config, form_data, context)

    filled = await filler.enter_fields(PAYMENT_FIELDS)

    assert filled == set(PAYMENT_FIELDS)
    assert [frame.filled for frame in frames] == [
        {"input": "4242424242424242"},
        {"input": "12/28"},
        {"input": "123"},
        {"input": "78701"},
    ]


@pytest.mark.asyncio
async def test_keyboard_entry_is_skipped_when_frames_exist(config, form_data, context):
    page = FakePage(
        url="https://app.test/checkout",
        elements={'input[name*="card"]': FakeElement(), 'button:has-text("Place Order")': FakeElement()},
        frames=[FakeFrame()],
    )
    filler = make_filler(page, config, form_data, context)

    result = await filler.fill_and_submit()

    assert not result.success
    assert "incomplete" in result.error
    assert page.keyboard.typed == []
    assert filler.submissions == 0
    assert 'button:has-text("Place Order")' not in page.clicked
