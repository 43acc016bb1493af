"""
Data records shared across the flow engine.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class ActionTier(str, Enum):
    """Fallback level that carried out an action."""
    DIRECT = "direct"
    SEMANTIC = "semantic"
    VISION = "vision"


class CheckoutSection(str, Enum):
    """Logical section currently shown by the checkout page."""
    ACCOUNT = "account"
    SUMMARY = "summary"
    PAYMENT = "payment"
    UNKNOWN = "unknown"


class Address(BaseModel):
    """Postal address of the persona."""
    model_config = ConfigDict(frozen=True)

    street: str = "123 Main Street"
    city: str = "Austin"
    zip: str = "78701"


class Persona(BaseModel):
    """Synthetic identity used to populate forms. Read-only for the whole run."""
    model_config = ConfigDict(frozen=True)

    first_name: str
    last_name: str
    full_name: str = ""
    email: str
    phone: str
    state: str
    address: Address = Field(default_factory=Address)
    password: str = "cakeroofQ1!"

    @property
    def display_name(self) -> str:
        return self.full_name or f"{self.first_name} {self.last_name}".strip()


class BusinessDetails(BaseModel):
    """Business being formed."""
    model_config = ConfigDict(frozen=True)

    business_name: str
    entity_type: str = "LLC"


class CardDetails(BaseModel):
    """Test card used on the payment form."""
    model_config = ConfigDict(frozen=True)

    number: str = "4242424242424242"
    expiry: str = "12/28"
    cvc: str = "123"
    zip: str = "78701"

    @property
    def expiry_month(self) -> str:
        return self.expiry.split("/")[0].strip()

    @property
    def expiry_year(self) -> str:
        return self.expiry.split("/")[-1].strip()


DEFAULT_UPSELLS = {
    "compliance_monitoring": False,
    "ein_service": False,
    "operating_agreement": False,
    "registered_agent": True,
    "rush_filing": False,
    "business_banking": False,
    "money_pro": False,
    "post_checkout": False,
}


class TestGoals(BaseModel):
    """Decisions the flow makes on behalf of the persona."""
    model_config = ConfigDict(frozen=True)

    # Keep pytest from collecting this model as a test class
    __test__ = False

    package_preference: Literal["starter", "pro", "premium"] = "starter"
    upsell_strategy: Literal["decline_all", "accept_all"] = "decline_all"
    upsells: Dict[str, bool] = Field(default_factory=lambda: dict(DEFAULT_UPSELLS))
    apply_for_banking: bool = False

    def should_accept(self, upsell_key: Optional[str], default_accept: bool = False) -> bool:
        """
        Decide whether an upsell offer is accepted.

        Offers without a key follow the overall strategy. Keyed offers use
        their explicit flag, falling back to the rule's default.
        """
        if upsell_key is None:
            return self.upsell_strategy == "accept_all"
        if upsell_key in self.upsells:
            return self.upsells[upsell_key]
        return default_accept


class FormData(BaseModel):
    """Everything a field value provider may draw from."""
    model_config = ConfigDict(frozen=True)

    persona: Persona
    business: BusinessDetails
    card: CardDetails = Field(default_factory=CardDetails)


class UpsellConfig(BaseModel):
    """Per-rule configuration for upsell pages."""
    model_config = ConfigDict(frozen=True)

    upsell_key: Optional[str] = None
    default_accept: bool = False
    label: str = "Generic"


class StepRecord:
    """One entry of the step log."""

    def __init__(self, action: str, success: bool, duration_ms: int = 0,
                 error: Optional[str] = None, tier: Optional[ActionTier] = None):
        self.action = action
        self.success = success
        self.duration_ms = duration_ms
        self.error = error
        self.tier = tier

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "action": self.action,
            "success": self.success,
            "duration": self.duration_ms,
        }
        if self.error:
            data["error"] = self.error
        if self.tier:
            data["tier"] = self.tier.value
        return data


class ActionOutcome:
    """Result of a fill/click/select primitive."""

    def __init__(self, succeeded: bool, tier: Optional[ActionTier] = None,
                 error: Optional[str] = None):
        self.succeeded = succeeded
        self.tier = tier
        self.error = error

    @classmethod
    def ok(cls, tier: ActionTier) -> "ActionOutcome":
        return cls(True, tier)

    @classmethod
    def failed(cls, error: str, tier: Optional[ActionTier] = None) -> "ActionOutcome":
        return cls(False, tier, error)

    def __bool__(self) -> bool:
        return self.succeeded

    def __repr__(self) -> str:
        tier = self.tier.value if self.tier else None
        return f"ActionOutcome(succeeded={self.succeeded}, tier={tier}, error={self.error!r})"


class FlowContext:
    """
    Mutable state of a single run.

    Navigation counters are advanced only through ``observe_location``,
    which the flow driver calls once per iteration. Handlers and the
    executor only append to the step log and the artifact map.
    """

    def __init__(self):
        self.step_count = 0
        self.last_location = ""
        self.repeat_count = 0
        self.step_log: List[StepRecord] = []
        self.artifacts: Dict[str, str] = {}
        self.terminal_locations: Set[str] = set()
        self.started_at = time.time()

    def observe_location(self, location: str) -> int:
        """Record the location seen at the start of an iteration and return the repeat count."""
        if location == self.last_location:
            self.repeat_count += 1
        else:
            self.repeat_count = 0
        self.last_location = location
        return self.repeat_count

    def record(self, action: str, success: bool, duration_ms: int = 0,
               error: Optional[str] = None, tier: Optional[ActionTier] = None) -> StepRecord:
        """Append an entry to the step log."""
        entry = StepRecord(action, success, duration_ms, error, tier)
        self.step_log.append(entry)
        return entry

    def add_artifact(self, name: str, path: str):
        self.artifacts[name] = path


class FlowResult(BaseModel):
    """Structured outcome of a run. Always produced, even on failure."""
    success: bool
    step_count: int
    final_location: str
    error: Optional[str] = None
    error_type: Optional[str] = None
    step_log: List[Dict[str, Any]] = Field(default_factory=list)
    artifacts: Dict[str, str] = Field(default_factory=dict)
    captcha_seconds: float = 0.0
    duration_seconds: float = 0.0
