"""
Error taxonomy for the flow engine.

Transient failures are retried locally, handler failures degrade to a
logged no-op step, and the remaining types end the run.
"""

from typing import Optional


class FlowError(Exception):
    """Base class for every error raised by the flow engine."""


class TransientActionFailure(FlowError):
    """Malformed or empty response from the action model. Retried within a tier."""


class ActionFailure(FlowError):
    """A single tier could not carry out an action."""

    def __init__(self, message: str, tier: Optional[str] = None):
        super().__init__(message)
        self.tier = tier


class HandlerFailure(FlowError):
    """A page handler could not advance its page. Treated as a no-op step."""

    def __init__(self, handler: str, message: str):
        super().__init__(f"{handler}: {message}")
        self.handler = handler


class StuckFailure(FlowError):
    """The location stopped changing for longer than its threshold."""

    def __init__(self, location: str, repeats: int, threshold: int):
        super().__init__(
            f"No progress on {location} after {repeats} repeats (threshold {threshold})"
        )
        self.location = location
        self.repeats = repeats
        self.threshold = threshold


class CaptchaTimeout(FlowError):
    """A CAPTCHA challenge was still present when the gate timed out."""

    def __init__(self, waited_seconds: float):
        super().__init__(f"CAPTCHA timeout after {waited_seconds:.0f}s")
        self.waited_seconds = waited_seconds


class PaymentValidationError(HandlerFailure):
    """The payment form rejected the card details. Carries the field the visible error names."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__("checkout", message)
        self.field = field


class FatalApiFailure(FlowError):
    """Authentication, permission or rate-limit failure from the model API. Never retried."""


# Errors that always end a run
FATAL_ERRORS = (StuckFailure, CaptchaTimeout, FatalApiFailure)
