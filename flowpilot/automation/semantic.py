"""
Semantic action tier: carries out a natural-language instruction against
the live page.

The page's visible interactive elements are tagged with ``data-flow-ref``
and described to the language model, which answers with the element and
the Playwright method that satisfy the instruction.
"""

from typing import Any, Dict, List

from loguru import logger
from playwright.async_api import Locator, Page

from flowpilot.automation import dom
from flowpilot.automation.llm_client import LLMClient
from flowpilot.automation.llm_models import SemanticAction, parse_semantic_action
from flowpilot.config import ExecutorConfig, LLMConfig
from flowpilot.errors import ActionFailure

SYSTEM_PROMPT = (
    "You operate a web page for a QA test of a business-formation signup flow. "
    "Given an instruction and a numbered list of visible interactive elements, choose the single "
    "element and method that carries out the instruction. Return only JSON of the form "
    '{"ref": "<element ref or null>", "method": "click|fill|select|press|type|check", '
    '"argument": "<text, option or key, or null>", "reasoning": "<short>"}. '
    "Use null for ref when no listed element matches."
)


def describe_elements(elements: List[Dict[str, Any]]) -> str:
    """Render tagged elements as one compact line each."""
    lines = []
    for el in elements:
        parts = [f"{el.get('ref')}: <{el.get('tag')}"]
        if el.get("type"):
            parts.append(f" type={el['type']}")
        if el.get("role"):
            parts.append(f" role={el['role']}")
        parts.append(">")
        for label in ("text", "placeholder", "aria_label", "name"):
            if el.get(label):
                parts.append(f' {label}="{el[label]}"')
        if el.get("options"):
            parts.append(f" options={el['options'][:15]}")
        lines.append("".join(parts))
    return "\n".join(lines)


class SemanticActor:
    """
    Resolves instructions like 'Click the "No" option' to a concrete element.
    """

    def __init__(self, page: Page, llm: LLMClient, llm_config: LLMConfig,
                 executor_config: ExecutorConfig):
        self.page = page
        self.llm = llm
        self.max_elements = llm_config.max_elements
        self.action_timeout = executor_config.select_timeout_ms
        self.typing_delay = executor_config.typing_delay_ms

    async def act(self, instruction: str) -> SemanticAction:
        """
        Carry out one instruction.

        Raises:
            TransientActionFailure: Model response was empty or malformed (retry-worthy)
            ActionFailure: No element matched or the element rejected the action
            FatalApiFailure: The model API refused the request
        """
        elements = await self.page.evaluate(dom.TAG_INTERACTIVE_JS, self.max_elements)
        if not elements:
            raise ActionFailure("No interactive elements on the page", tier="semantic")

        prompt = (
            f"Instruction: {instruction}\n\n"
            f"Page: {self.page.url}\n"
            f"Elements:\n{describe_elements(elements)}"
        )
        response = await self.llm.complete_json(SYSTEM_PROMPT, prompt)
        action = parse_semantic_action(response)

        if action.ref is None:
            raise ActionFailure(f"No element matches instruction: {instruction}", tier="semantic")

        locator = self.page.locator(f'[data-flow-ref="{action.ref}"]').first
        if await locator.count() == 0:
            raise ActionFailure(f"Element {action.ref} disappeared before acting", tier="semantic")

        logger.debug(f"   🧠 {action.method} {action.ref} ({action.reasoning})")
        await self._perform(locator, action)
        return action

    async def _perform(self, locator: Locator, action: SemanticAction):
        timeout = self.action_timeout
        if action.method == "click":
            await locator.click(timeout=timeout)
        elif action.method == "fill":
            await locator.fill(action.argument or "", timeout=timeout)
        elif action.method == "type":
            await locator.click(timeout=timeout)
            await locator.press_sequentially(action.argument or "", delay=self.typing_delay)
        elif action.method == "select":
            try:
                await locator.select_option(label=action.argument, timeout=timeout)
            except Exception:
                await locator.select_option(value=action.argument, timeout=timeout)
        elif action.method == "press":
            await locator.press(action.argument or "Enter", timeout=timeout)
        elif action.method == "check":
            await locator.check(timeout=timeout)
