"""
Selector tables and field value providers for the direct action tier.

Every field is described once: an ordered list of structural selectors
plus a provider that pulls the value from the run's form data.
"""

from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from flowpilot.models import FormData

ValueProvider = Callable[[FormData], Optional[str]]


class FieldSpec(NamedTuple):
    """Selectors and value provider for a single form field."""
    selectors: List[str]
    value: ValueProvider
    aliases: Tuple[str, ...] = ()


FIELD_SPECS: Dict[str, FieldSpec] = {
    "email": FieldSpec(
        ['input[type="email"]', 'input[name*="email"]', '[placeholder*="email" i]'],
        lambda d: d.persona.email,
    ),
    "password": FieldSpec(
        ['input[type="password"]', 'input[name*="password"]'],
        lambda d: d.persona.password,
    ),
    "first_name": FieldSpec(
        ['input[name*="first"]', '[placeholder*="first" i]'],
        lambda d: d.persona.first_name,
        ("first name", "first"),
    ),
    "last_name": FieldSpec(
        ['input[name*="last"]', '[placeholder*="last" i]'],
        lambda d: d.persona.last_name,
        ("last name", "last"),
    ),
    "full_name": FieldSpec(
        ['input[name*="name"]', '[placeholder*="name" i]'],
        lambda d: d.persona.display_name,
        ("full name",),
    ),
    "phone": FieldSpec(
        ['input[type="tel"]', 'input[name*="phone"]', '[placeholder*="phone" i]'],
        lambda d: d.persona.phone,
    ),
    "business_name": FieldSpec(
        ['input[name*="business"]', 'input[name*="company"]', '[placeholder*="business" i]'],
        lambda d: d.business.business_name,
        ("business", "company"),
    ),
    "address": FieldSpec(
        ['input[name*="address"]', 'input[name*="street"]', '[placeholder*="address" i]'],
        lambda d: d.persona.address.street,
        ("street",),
    ),
    "city": FieldSpec(
        ['input[name*="city"]', '[placeholder*="city" i]'],
        lambda d: d.persona.address.city,
    ),
    "zip": FieldSpec(
        ['input[name*="zip"]', 'input[name*="postal"]', '[placeholder*="zip" i]'],
        lambda d: d.persona.address.zip,
        ("postal",),
    ),
    "state": FieldSpec(
        ['select[name*="state"]', 'select[id*="state"]', '[aria-label*="state" i]', 'select'],
        lambda d: d.persona.state,
    ),
    "card_number": FieldSpec(
        ['input[name*="card"]', 'input[name*="number"]', '[placeholder*="card" i]'],
        lambda d: d.card.number,
        ("card number", "card"),
    ),
    "cvc": FieldSpec(
        ['input[name*="cvv"]', 'input[name*="cvc"]', '[placeholder*="cvv" i]'],
        lambda d: d.card.cvc,
        ("cvv", "security code"),
    ),
    "expiry": FieldSpec(
        ['input[name*="exp"]', '[placeholder*="exp" i]', '[placeholder*="mm" i]'],
        lambda d: d.card.expiry,
        ("expir", "mm/yy"),
    ),
}

CTA_SELECTORS = [
    'button:has-text("Continue")',
    'button:has-text("Next")',
    'button:has-text("Get started")',
    'button:has-text("Create account")',
    'button:has-text("Submit")',
    '[data-testid*="continue"]',
    '[data-testid*="submit"]',
    'button[type="submit"]',
    '.btn-primary',
    'button.primary',
]

CHECKOUT_SELECTORS = [
    'button:has-text("Save and continue")',
    'button:has-text("Place Order")',
    'button:has-text("Complete Purchase")',
    'button:has-text("Submit Order")',
    'button:has-text("Pay Now")',
    '[data-testid*="checkout"] button[type="submit"]',
    'form button[type="submit"]',
    '.checkout button.primary',
    'button.checkout-btn',
]

COUNTY_SELECTORS = [
    'select[name*="county"]',
    'select[id*="county"]',
    '[data-testid*="county"] select',
    'select[aria-label*="county" i]',
    '.county-select select',
]

MODAL_CLOSE_SELECTORS = [
    'button[aria-label*="Close" i]',
    'button[aria-label*="Dismiss" i]',
    'button[title*="Close" i]',
    'button:has-text("×")',
    'button:has-text("✕")',
    '[role="dialog"] button[aria-label*="Close" i]',
    '[role="dialog"] button:has(svg)',
    'button[class*="close" i]',
    'button[class*="dismiss" i]',
    '[data-testid*="close" i]',
    '[data-dismiss="modal"]',
    'button:has-text("No thanks")',
    'button:has-text("Maybe later")',
    'button:has-text("Not now")',
]

UPSELL_ACCEPT_SELECTORS = [
    'button:has-text("Yes, add")',
    'button:has-text("Yes")',
    'button:has-text("Add")',
    'button:has-text("Appoint")',
    'button:has-text("Keep me covered")',
    'button[class*="primary"]',
    'button[class*="black"]',
]

UPSELL_DECLINE_SELECTORS = [
    'button:has-text("No thanks")',
    'button:has-text("No")',
    'button:has-text("Skip")',
    'a:has-text("Skip")',
    'button:has-text("figure it out myself")',
    'button:has-text("appoint someone else")',
    'button:has-text("Maybe later")',
    'button[class*="secondary"]',
    'button[class*="outline"]',
]

PACKAGE_CONTINUE_SELECTORS = [
    'button:has-text("Continue")',
    'button:has-text("Select")',
    'button[type="submit"]',
]


def package_selectors(package_name: str) -> List[str]:
    """Selectors that pick a pricing package by name."""
    lower, upper = package_name.lower(), package_name.upper()
    return [
        f'button:has-text("{upper}")',
        f'button:has-text("{lower}")',
        f'[class*="package"]:has-text("{upper}") button',
        f'[data-package="{lower}"]',
        f'input[value="{lower}"]',
        f'label:has-text("{upper}") input',
    ]


def _names_key(key: str, description: str) -> bool:
    return key.replace("_", " ") in description or key in description


def resolve_field(description: str) -> Optional[str]:
    """
    Map a free-text field description ("first name", "Card number") to a field key.

    Field names win over aliases, so "Business state" is the state field
    even though "business" is an alias of the business name.
    """
    d = description.lower()
    # Compound names are checked before their generic parts
    for key in ("first_name", "last_name", "full_name", "business_name", "card_number"):
        if _names_key(key, d):
            return key
    for key in FIELD_SPECS:
        if _names_key(key, d):
            return key
    for key, spec in FIELD_SPECS.items():
        if any(alias in d for alias in spec.aliases):
            return key
    return None


def value_for(description: str, data: FormData) -> Optional[str]:
    """Value the persona would type into the described field."""
    key = resolve_field(description)
    if key is None:
        return None
    return FIELD_SPECS[key].value(data)


def selectors_for(description: str) -> List[str]:
    """Structural selectors for the described field, with a generic fallback."""
    key = resolve_field(description)
    if key is None:
        return ['input:visible', 'textarea:visible']
    return list(FIELD_SPECS[key].selectors)
