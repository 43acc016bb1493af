"""
Vision tier: asks a vision-capable model for the next concrete action
given a screenshot of the current page.
"""

import base64
from typing import Optional

from loguru import logger
from playwright.async_api import Page

from flowpilot.automation.llm_client import LLMClient
from flowpilot.automation.llm_models import (
    DEFAULT_VISION_DECISION,
    VisionDecision,
    parse_vision_decision,
)
from flowpilot.errors import FatalApiFailure
from flowpilot.models import FormData

SYSTEM_PROMPT = (
    "You are a QA automation agent with vision capabilities walking through a business-formation "
    "signup flow. Analyze the screenshot and return only valid JSON."
)


class VisionAdvisor:
    """
    Screenshot in, ``VisionDecision`` out.
    """

    def __init__(self, page: Page, llm: LLMClient, data: FormData, model: Optional[str] = None):
        self.page = page
        self.llm = llm
        self.data = data
        self.model = model

    def _build_prompt(self, objective: str) -> str:
        persona, card = self.data.persona, self.data.card
        return f"""Objective: {objective}
Current page: {self.page.url}

DATA: Name: {persona.first_name} {persona.last_name}, Email: {persona.email}, Phone: {persona.phone},
State: {persona.state}, Business: {self.data.business.business_name},
Card: {card.number}, Exp {card.expiry}, CVC {card.cvc}, ZIP {card.zip}, Password: {persona.password}

Look for validation errors or required empty fields first.

Return JSON: {{"action": "click|fill|select|done", "target": "element label", "value": "data or null", "reasoning": "short"}}
Use "done" only when the objective is complete. Do NOT return a wait action."""

    async def decide(self, objective: str) -> VisionDecision:
        """
        Decide the next action for the page as it looks now.

        Never fails on bad model output: unusable answers and request errors
        degrade to clicking the Continue button. Fatal API errors propagate.
        """
        try:
            screenshot = await self.page.screenshot(type="png")
            screenshot_base64 = base64.b64encode(screenshot).decode("utf-8")
            response = await self.llm.complete_json(
                SYSTEM_PROMPT,
                self._build_prompt(objective),
                screenshot_base64=screenshot_base64,
                model=self.model,
            )
        except FatalApiFailure:
            raise
        except Exception as e:
            logger.warning(f"⚠️ Vision decision failed, defaulting to Continue: {e}")
            return DEFAULT_VISION_DECISION

        decision = parse_vision_decision(response)
        logger.info(f"   👁️ Vision decision: {decision.to_dict()}")
        return decision
