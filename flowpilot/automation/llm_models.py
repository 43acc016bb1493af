"""
Pydantic models for structured LLM outputs.
Ensures reliable parsing and validation of model decisions.
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from flowpilot.errors import TransientActionFailure


class SemanticAction(BaseModel):
    """
    Element choice returned by the semantic tier for a natural-language instruction.
    """

    ref: Optional[str] = Field(
        default=None,
        description="data-flow-ref of the element to act on, or null when nothing matches"
    )

    method: Literal["click", "fill", "select", "press", "type", "check"] = Field(
        description="Playwright method to invoke on the element"
    )

    argument: Optional[str] = Field(
        default=None,
        description="Text to type, option to select or key to press"
    )

    reasoning: str = Field(
        default="",
        description="Why this element satisfies the instruction"
    )

    @field_validator("ref")
    @classmethod
    def normalize_ref(cls, v: Optional[str]) -> Optional[str]:
        """Treat the string forms of 'no element' as missing."""
        if v is None:
            return None
        v = v.strip()
        if not v or v.lower() in ("null", "none"):
            return None
        return v


class VisionDecision(BaseModel):
    """
    Next action proposed by the vision tier from a screenshot.
    """

    action: Literal["click", "fill", "select", "done"] = Field(
        description="Type of action to perform"
    )

    target: Optional[str] = Field(
        default=None,
        description="Visible label or description of the element"
    )

    value: Optional[str] = Field(
        default=None,
        description="Value to fill or option to select"
    )

    reasoning: str = Field(
        default="",
        description="What the model saw and why it chose this action"
    )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


DEFAULT_VISION_DECISION = VisionDecision(
    action="click",
    target="Continue button",
    reasoning="Fallback: model response could not be parsed",
)


def parse_semantic_action(response_dict: Optional[Dict[str, Any]]) -> SemanticAction:
    """
    Parse and validate a semantic action response.

    Raises:
        TransientActionFailure: If the response is empty or does not match the schema
    """
    if not response_dict:
        raise TransientActionFailure("No object generated: empty model response")
    try:
        return SemanticAction(**response_dict)
    except ValidationError as e:
        raise TransientActionFailure(f"Model response did not match schema: {e.error_count()} errors")


def parse_vision_decision(response_dict: Optional[Dict[str, Any]]) -> VisionDecision:
    """Parse a vision response. Unusable responses degrade to clicking Continue."""
    if not response_dict:
        return DEFAULT_VISION_DECISION
    try:
        return VisionDecision(**response_dict)
    except ValidationError:
        # Models sometimes answer "wait"; treat like an unusable answer
        return DEFAULT_VISION_DECISION
