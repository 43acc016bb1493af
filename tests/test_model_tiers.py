"""Model client, semantic actor and vision advisor against canned responses."""

from types import SimpleNamespace

import pytest

from conftest import FakeElement, FakePage
from flowpilot.automation import dom
from flowpilot.automation.llm_client import LLMClient
from flowpilot.automation.llm_models import DEFAULT_VISION_DECISION
from flowpilot.automation.semantic import SemanticActor, describe_elements
from flowpilot.automation.vision import VisionAdvisor
from flowpilot.config import ExecutorConfig, LLMConfig
from flowpilot.errors import ActionFailure, FatalApiFailure, TransientActionFailure


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_openai(content):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content)))


class CannedLLM:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.prompts = []

    async def complete_json(self, system_prompt, prompt, screenshot_base64=None, model=None):
        self.prompts.append((prompt, screenshot_base64, model))
        if self.error:
            raise self.error
        return self.response


def test_client_requires_api_key():
    with pytest.raises(ValueError):
        LLMClient(LLMConfig(api_key=""))


@pytest.mark.asyncio
async def test_client_parses_json_mode_answer():
    openai = fake_openai('{"ref": "e2", "method": "click"}')
    client = LLMClient(LLMConfig(), client=openai)

    answer = await client.complete_json("system", "Click Continue", screenshot_base64="aGk=")

    assert answer == {"ref": "e2", "method": "click"}
    request = openai.chat.completions.requests[0]
    assert request["response_format"] == {"type": "json_object"}
    assert request["model"] == "gpt-4o-mini"
    assert request["messages"][1]["content"][1]["image_url"]["url"].startswith("data:image/png;base64,")


@pytest.mark.parametrize("content", [None, "  ", "not json"])
@pytest.mark.asyncio
async def test_client_unusable_answers_are_transient(content):
    client = LLMClient(LLMConfig(), client=fake_openai(content))

    with pytest.raises(TransientActionFailure):
        await client.complete_json("system", "prompt")


def test_tagging_clears_previous_refs_before_assigning():
    script = dom.TAG_INTERACTIVE_JS
    cleared = script.index("removeAttribute('data-flow-ref')")
    assigned = script.index("setAttribute('data-flow-ref'")
    assert "querySelectorAll('[data-flow-ref]')" in script[:cleared]
    assert cleared < assigned


def test_describe_elements():
    text = describe_elements([
        {"ref": "e1", "tag": "input", "type": "email", "placeholder": "Email"},
        {"ref": "e2", "tag": "select", "name": "state", "options": ["Texas", "Ohio"]},
    ])
    assert text.splitlines() == [
        'e1: <input type=email> placeholder="Email"',
        "e2: <select> name=\"state\" options=['Texas', 'Ohio']",
    ]


def make_actor(page, llm):
    return SemanticActor(page, llm, LLMConfig(), ExecutorConfig())


@pytest.mark.asyncio
async def test_semantic_actor_clicks_chosen_element():
    page = FakePage(
        elements={'[data-flow-ref="e1"]': FakeElement()},
        scripts={dom.TAG_INTERACTIVE_JS: [{"ref": "e1", "tag": "button", "text": "No"}]},
    )
    llm = CannedLLM({"ref": "e1", "method": "click", "reasoning": "the No option"})

    action = await make_actor(page, llm).act('Click "No"')

    assert action.ref == "e1"
    assert page.clicked == ['[data-flow-ref="e1"]']
    assert 'e1: <button> text="No"' in llm.prompts[0][0]


@pytest.mark.asyncio
async def test_semantic_actor_fills_with_argument():
    page = FakePage(
        elements={'[data-flow-ref="e3"]': FakeElement()},
        scripts={dom.TAG_INTERACTIVE_JS: [{"ref": "e3", "tag": "input"}]},
    )
    llm = CannedLLM({"ref": "e3", "method": "fill", "argument": "Austin"})

    await make_actor(page, llm).act('Type "Austin" into the city field')

    assert page.filled == {'[data-flow-ref="e3"]': "Austin"}


@pytest.mark.asyncio
async def test_semantic_actor_without_match_fails():
    page = FakePage(scripts={dom.TAG_INTERACTIVE_JS: [{"ref": "e1", "tag": "button"}]})
    llm = CannedLLM({"ref": None, "method": "click"})

    with pytest.raises(ActionFailure):
        await make_actor(page, llm).act("Click Apply for Banking")


@pytest.mark.asyncio
async def test_semantic_actor_on_empty_page_skips_model():
    llm = CannedLLM({"ref": "e1", "method": "click"})

    with pytest.raises(ActionFailure):
        await make_actor(FakePage(scripts={dom.TAG_INTERACTIVE_JS: []}), llm).act("Click Continue")
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_vision_decision_uses_screenshot(form_data):
    llm = CannedLLM({"action": "fill", "target": "ZIP", "value": "78701"})
    advisor = VisionAdvisor(FakePage(), llm, form_data, model="gpt-4o")

    decision = await advisor.decide("Finish payment")

    assert decision.action == "fill"
    prompt, screenshot, model = llm.prompts[0]
    assert "Objective: Finish payment" in prompt
    assert "Card: 4242424242424242" in prompt
    assert screenshot == "cG5n"
    assert model == "gpt-4o"


@pytest.mark.asyncio
async def test_vision_request_errors_default_to_continue(form_data):
    advisor = VisionAdvisor(FakePage(), CannedLLM(error=TransientActionFailure("empty")), form_data)
    assert await advisor.decide("anything") is DEFAULT_VISION_DECISION


@pytest.mark.asyncio
async def test_vision_fatal_errors_propagate(form_data):
    advisor = VisionAdvisor(FakePage(), CannedLLM(error=FatalApiFailure("RateLimitError")), form_data)
    with pytest.raises(FatalApiFailure):
        await advisor.decide("anything")
