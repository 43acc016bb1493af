"""Routing table precedence and terminal detection."""

import pytest

from flowpilot.automation.handlers import PageHandlers
from flowpilot.automation.registry import (
    RULES,
    contains_any,
    find_handler,
    handler_name,
    is_end_state,
)


@pytest.mark.parametrize("url, expected", [
    ("https://app.test/shop/llc/?entity=llc", "businessState"),
    ("https://app.test/shop/llc/business-name", "businessName"),
    ("https://app.test/contact-info", "contactInfo"),
    ("https://app.test/existing-business", "existingBusiness"),
    ("https://app.test/business-experience", "businessExperience"),
    ("https://app.test/industry", "industry"),
    ("https://app.test/sign-up", "accountCreation"),
    ("https://app.test/pricing", "packageSelection"),
    ("https://app.test/registered-agent", "registeredAgent"),
    ("https://app.test/worry-free-compliance", "compliance"),
    ("https://app.test/employer-identification-number", "ein"),
    ("https://app.test/operating-agreement", "operatingAgreement"),
    ("https://app.test/money-pro", "moneyPro"),
    ("https://app.test/rush-filing", "rushFiling"),
    ("https://app.test/banking", "banking"),
    ("https://app.test/special-upsell", "genericUpsell"),
    ("https://app.test/checkout", "checkout"),
    ("https://app.test/llc-addons/business-kit", "postCheckoutUpsell"),
    ("https://app.test/checkout/banking-application", "bankingApplication"),
    ("https://app.test/order/confirmation", "orderConfirmation"),
])
def test_first_matching_rule_wins(url, expected):
    assert handler_name(url) == expected


def test_exclusions_redirect_overlapping_patterns():
    # "register" would match account creation without the exclusion
    assert find_handler("https://app.test/registered-agent").name == "registeredAgent"
    assert find_handler("https://app.test/bank-account").name == "bankingApplication"
    assert find_handler("https://app.test/money-back-guarantee") is None


def test_terminal_rule_precedes_checkout():
    assert is_end_state("https://app.test/checkout/success")
    assert is_end_state("https://app.test/dashboard")
    assert not is_end_state("https://app.test/checkout")


def test_unknown_location_has_no_handler():
    assert find_handler("https://app.test/welcome") is None
    assert handler_name("https://app.test/welcome") == "unknown"
    assert not is_end_state("https://app.test/welcome")


def test_lookup_is_deterministic():
    url = "https://app.test/shop/llc/?entity=llc"
    assert find_handler(url) is find_handler(url)


def test_rules_reference_handler_methods():
    names = [rule.name for rule in RULES]
    assert len(names) == len(set(names))
    for rule in RULES:
        if rule.end_state:
            assert rule.handler is None
        else:
            assert rule.handler is not None
            assert getattr(PageHandlers, rule.handler.__name__) is rule.handler


def test_upsell_rules_carry_their_decision_key():
    rule = find_handler("https://app.test/registered-agent")
    assert rule.handler is PageHandlers.handle_upsell
    assert rule.config.upsell_key == "registered_agent"
    assert rule.config.default_accept is True

    generic = find_handler("https://app.test/special-upsell")
    assert generic.config is None


def test_contains_any_predicate():
    predicate = contains_any("rush", "filing")
    assert predicate("https://app.test/rush")
    assert not predicate("https://app.test/ein")
