"""
Page handler registry: an ordered rule table mapping locations to handlers.

Rules are evaluated top to bottom and the first rule whose include
predicates all hold and whose exclude predicates all fail wins. Patterns
overlap on purpose ("banking" upsell vs. "banking-application"), so
precedence comes from declaration order and exclusions, not from
disjoint patterns.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from flowpilot.automation.handlers import PageHandlers
from flowpilot.models import UpsellConfig

HandlerFn = Callable[[PageHandlers, Optional[UpsellConfig]], Awaitable[None]]


@dataclass(frozen=True)
class ContainsAny:
    """Location predicate: true when any pattern is a substring of the location."""
    patterns: Tuple[str, ...]

    def __call__(self, location: str) -> bool:
        return any(pattern in location for pattern in self.patterns)


def contains_any(*patterns: str) -> ContainsAny:
    return ContainsAny(tuple(patterns))


@dataclass(frozen=True)
class HandlerRule:
    """One routing rule. Immutable and declared once at import time."""
    name: str
    include: Tuple[Callable[[str], bool], ...]
    exclude: Tuple[Callable[[str], bool], ...] = ()
    handler: Optional[HandlerFn] = None
    config: Optional[UpsellConfig] = None
    end_state: bool = False

    def matches(self, location: str) -> bool:
        return all(p(location) for p in self.include) and not any(p(location) for p in self.exclude)


def _rule(name: str, patterns: Tuple[str, ...], handler: Optional[HandlerFn] = None,
          exclude: Tuple[str, ...] = (), config: Optional[UpsellConfig] = None,
          end_state: bool = False) -> HandlerRule:
    return HandlerRule(
        name=name,
        include=(contains_any(*patterns),),
        exclude=(contains_any(*exclude),) if exclude else (),
        handler=handler,
        config=config,
        end_state=end_state,
    )


def _upsell(key: str, label: str, default_accept: bool = False) -> UpsellConfig:
    return UpsellConfig(upsell_key=key, default_accept=default_accept, label=label)


H = PageHandlers

# Declaration order is precedence. More specific routes come first.
RULES: Tuple[HandlerRule, ...] = (
    _rule("orderConfirmation",
          ("confirmation", "thank-you", "success", "order-complete", "dashboard", "my-account", "/f/journey"),
          end_state=True),
    _rule("postCheckoutUpsell", ("llc-addons/business-kit", "llc-addons/website", "llc-addons/"),
          H.handle_upsell, exclude=("confirmation",),
          config=_upsell("post_checkout", "Post-Checkout Upsell")),
    _rule("bankingApplication", ("banking-application", "bank-account", "open-account"),
          H.handle_banking_application),
    _rule("businessState", ("business-state", "/shop/llc/?"), H.handle_business_state,
          exclude=("business-name",)),
    _rule("businessName", ("business-name",), H.handle_business_name),
    _rule("contactInfo", ("contact-info",), H.handle_contact_info),
    _rule("existingBusiness", ("existing-business", "designator"), H.handle_existing_business),
    _rule("businessExperience", ("business-experience", "business-stage"), H.handle_business_experience),
    _rule("industry", ("industry",), H.handle_industry),
    _rule("accountCreation", ("sign-up", "create-account", "register"), H.handle_account_creation,
          exclude=("registered-agent",)),
    _rule("packageSelection", ("package-selection", "pricing", "packages"), H.handle_package_selection),
    _rule("registeredAgent", ("registered-agent",), H.handle_upsell,
          config=_upsell("registered_agent", "Registered Agent", default_accept=True)),
    _rule("compliance", ("worry-free-compliance", "compliance"), H.handle_upsell,
          exclude=("compliance-monitoring",),
          config=_upsell("compliance_monitoring", "Worry-Free Compliance")),
    _rule("ein", ("employer-identification-number", "ein"), H.handle_upsell,
          config=_upsell("ein_service", "EIN")),
    _rule("operatingAgreement", ("operating-agreement",), H.handle_upsell,
          config=_upsell("operating_agreement", "Operating Agreement")),
    _rule("moneyPro", ("money-pro", "money"), H.handle_upsell, exclude=("money-back",),
          config=_upsell("money_pro", "Money Pro")),
    _rule("rushFiling", ("rush-filing", "rush"), H.handle_upsell,
          config=_upsell("rush_filing", "Rush Filing")),
    _rule("banking", ("banking", "bank"), H.handle_upsell,
          exclude=("banking-application", "bank-account"),
          config=_upsell("business_banking", "Business Banking")),
    _rule("genericUpsell", ("upsell", "add-on", "upgrade"), H.handle_upsell),
    _rule("checkout", ("checkout",), H.handle_checkout),
)


def find_handler(location: str) -> Optional[HandlerRule]:
    """Return the first rule matching the location, or None."""
    for rule in RULES:
        if rule.matches(location):
            return rule
    return None


def is_end_state(location: str) -> bool:
    """Whether the location is a terminal (successful) state."""
    rule = find_handler(location)
    return rule is not None and rule.end_state


def handler_name(location: str) -> str:
    rule = find_handler(location)
    return rule.name if rule else "unknown"
