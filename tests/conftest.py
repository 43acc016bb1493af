"""
Shared fixtures: in-memory stand-ins for the Playwright page and the
model-backed tiers. Nothing here touches a browser or the network.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from flowpilot.config import (
    ArtifactsConfig,
    CaptchaConfig,
    Config,
    ExecutorConfig,
    FlowConfig,
    PaymentConfig,
    TimingConfig,
)
from flowpilot.models import BusinessDetails, FlowContext, FormData, Persona, TestGoals


class FakeElement:
    """One element behind a selector."""

    def __init__(self, visible: bool = True, enabled: bool = True,
                 options: Optional[List[str]] = None,
                 on_click: Optional[Callable[["FakePage"], None]] = None,
                 placeholder: Optional[str] = None):
        self.visible = visible
        self.enabled = enabled
        self.options = options
        self.on_click = on_click
        self.placeholder = placeholder
        self.value: Optional[str] = None
        self.clicks = 0


class FakeLocator:
    """Resolves to the element registered for the exact selector string."""

    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def nth(self, index: int) -> "FakeLocator":
        return self

    def locator(self, selector: str) -> "FakeLocator":
        return FakeLocator(self.page, selector)

    def _element(self) -> FakeElement:
        element = self.page.elements.get(self.selector)
        if element is None:
            raise RuntimeError(f"Timeout waiting for {self.selector}")
        return element

    async def count(self) -> int:
        return self.page.counts.get(self.selector, 1 if self.selector in self.page.elements else 0)

    async def is_visible(self) -> bool:
        element = self.page.elements.get(self.selector)
        return bool(element and element.visible)

    async def is_enabled(self, timeout: Optional[float] = None) -> bool:
        return self._element().enabled

    async def fill(self, value: str, **kwargs):
        self._element().value = value
        self.page.filled[self.selector] = value

    async def click(self, **kwargs):
        element = self._element()
        element.clicks += 1
        self.page.clicked.append(self.selector)
        if element.on_click:
            element.on_click(self.page)

    async def select_option(self, label: Optional[str] = None, value: Optional[str] = None,
                            index: Optional[int] = None, **kwargs):
        element = self._element()
        options = element.options or []
        if label is not None:
            if label not in options:
                raise RuntimeError(f"No option labelled {label}")
            choice = label
        elif value is not None:
            if value not in options:
                raise RuntimeError(f"No option with value {value}")
            choice = value
        else:
            choice = options[index or 0]
        element.value = choice
        self.page.selected[self.selector] = choice

    async def get_attribute(self, name: str) -> Optional[str]:
        if name == "placeholder":
            return self._element().placeholder
        return None

    async def press_sequentially(self, text: str, **kwargs):
        await self.fill(text)

    async def press(self, key: str, **kwargs):
        self.page.keyboard.pressed.append(key)

    async def check(self, **kwargs):
        await self.click()


class FakeKeyboard:
    def __init__(self):
        self.pressed: List[str] = []
        self.typed: List[str] = []

    async def press(self, key: str):
        self.pressed.append(key)

    async def type(self, text: str, delay: Optional[float] = None):
        self.typed.append(text)


class FakeFrame:
    """An embedded frame holding its own elements, e.g. one hosted card field."""

    def __init__(self, elements: Optional[Dict[str, FakeElement]] = None):
        self.elements: Dict[str, FakeElement] = dict(elements or {})
        self.counts: Dict[str, int] = {}
        self.filled: Dict[str, str] = {}
        self.selected: Dict[str, str] = {}
        self.clicked: List[str] = []
        self.keyboard = FakeKeyboard()

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)


class FakeFrameLocator:
    """``nth(i)`` is the page's i-th embedded frame."""

    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    def nth(self, index: int) -> FakeFrame:
        return self.page.frames[1 + index]


class FakePage:
    """
    Minimal async page.

    ``elements`` maps exact selector strings to elements. ``scripts`` maps
    JS snippets to the value ``evaluate`` returns; callables receive the page.
    ``frames`` are embedded frames after the main frame. ``counts`` overrides
    the match count of a selector.
    """

    def __init__(self, url: str = "https://app.test/", elements: Optional[Dict[str, FakeElement]] = None,
                 scripts: Optional[Dict[str, Any]] = None, title: str = "",
                 frames: Optional[List[FakeFrame]] = None, counts: Optional[Dict[str, int]] = None):
        self.url = url
        self.elements: Dict[str, FakeElement] = dict(elements or {})
        self.scripts: Dict[str, Any] = dict(scripts or {})
        self.title_text = title
        self.filled: Dict[str, str] = {}
        self.selected: Dict[str, str] = {}
        self.clicked: List[str] = []
        self.evaluated: List[str] = []
        self.visited: List[str] = []
        self.screenshots: List[Optional[str]] = []
        self.keyboard = FakeKeyboard()
        self.main_frame = object()
        self.frames = [self.main_frame] + list(frames or [])
        self.counts: Dict[str, int] = dict(counts or {})

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def frame_locator(self, selector: str) -> FakeFrameLocator:
        return FakeFrameLocator(self, selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        result = self.scripts.get(script)
        if callable(result):
            return result(self)
        return result

    async def goto(self, url: str, **kwargs):
        self.visited.append(url)
        self.url = url

    async def title(self) -> str:
        return self.title_text

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False, **kwargs) -> bytes:
        self.screenshots.append(path)
        if path:
            Path(path).write_bytes(b"png")
        return b"png"


def navigate_to(url: str) -> Callable[[FakePage], None]:
    """on_click callback that moves the page to ``url``."""
    def _navigate(page: FakePage):
        page.url = url
    return _navigate


class FakeSemantic:
    """
    Semantic tier stand-in. Each queued outcome is consumed by one call:
    an exception is raised, a callable receives (instruction, page).
    Once the queue is empty every call succeeds.
    """

    def __init__(self, page: Optional[FakePage] = None, outcomes: Optional[List[Any]] = None):
        self.page = page
        self.outcomes = list(outcomes or [])
        self.instructions: List[str] = []

    async def act(self, instruction: str):
        self.instructions.append(instruction)
        if not self.outcomes:
            return None
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            outcome(instruction, self.page)
        return None


class FakeVision:
    def __init__(self, decision):
        self.decision = decision
        self.objectives: List[str] = []

    async def decide(self, objective: str):
        self.objectives.append(objective)
        return self.decision


@pytest.fixture
def config(tmp_path) -> Config:
    """Configuration with zero waits so tests run instantly."""
    return Config(
        persona=Persona(
            first_name="Jordan",
            last_name="Rivera",
            email="jordan@example.com",
            phone="5125550142",
            state="Texas",
        ),
        business=BusinessDetails(business_name="Rivera Test Ventures"),
        timing=TimingConfig(brief=0, short=0, medium=0, long=0, navigation=0, checkout=0, payment=0),
        executor=ExecutorConfig(retry_backoff_ms=0, lookup_timeout_ms=10, select_timeout_ms=10, typing_delay_ms=0),
        payment=PaymentConfig(processing_grace_ms=0),
        captcha=CaptchaConfig(timeout=0.05, poll_interval=0.01),
        flow=FlowConfig(step_cache_path=str(tmp_path / "step_cache.json")),
        artifacts=ArtifactsConfig(directory=str(tmp_path / "results")),
    )


@pytest.fixture
def form_data(config) -> FormData:
    return FormData(persona=config.persona, business=config.business, card=config.payment.card)


@pytest.fixture
def goals() -> TestGoals:
    return TestGoals()


@pytest.fixture
def context() -> FlowContext:
    return FlowContext()


@pytest.fixture
def page() -> FakePage:
    return FakePage()
