"""Command line goal overrides and the run wrapper."""

import argparse

import pytest

from conftest import FakePage
from flowpilot import runner as runner_module
from flowpilot.runner import FlowRunner
from main import build_goals


def namespace(**overrides):
    values = {"goal": None, "package": None, "upsell": None, "apply_banking": False}
    values.update(overrides)
    return argparse.Namespace(**values)


def test_no_overrides_keeps_configured_goals(config):
    assert build_goals(config, namespace()) is config.goals


def test_overrides_are_applied(config):
    goals = build_goals(config, namespace(goal="accept_all", package="pro",
                                          upsell=["ein_service"], apply_banking=True))

    assert goals.upsell_strategy == "accept_all"
    assert goals.package_preference == "pro"
    assert goals.upsells["ein_service"] is True
    assert goals.upsells["money_pro"] is False
    assert goals.apply_for_banking is True
    # The configured goals are left untouched
    assert config.goals.upsells["ein_service"] is False


class FakeSession:
    def __init__(self, config, run_dir=None):
        self.run_dir = run_dir
        self.page = None
        self.closed = False

    @property
    def screenshots_dir(self):
        return self.run_dir / "screenshots"

    async def initialize(self):
        self.page = FakePage()
        return self.page

    async def take_screenshot(self, name="screenshot", full_page=True):
        return None

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_runner_writes_result_file(config, monkeypatch):
    monkeypatch.setattr(runner_module, "BrowserSession", FakeSession)
    flow_runner = FlowRunner(config)

    result = await flow_runner.run("https://app.test/order/confirmation")

    assert result.success
    assert flow_runner.session.closed
    assert (flow_runner.run_dir / "result.json").exists()
    assert flow_runner.run_dir.name.endswith("_jordan-rivera")


@pytest.mark.asyncio
async def test_runner_reports_step_cache_stats(config, monkeypatch):
    monkeypatch.setattr(runner_module, "BrowserSession", FakeSession)
    flow_runner = FlowRunner(config)
    reported = []
    original = flow_runner.log_step_cache

    def log_step_cache(step_cache):
        reported.append(original(step_cache))
        return reported[-1]

    monkeypatch.setattr(flow_runner, "log_step_cache", log_step_cache)

    await flow_runner.run("https://app.test/order/confirmation")

    assert reported == [{"locations": 0, "total_attempts": 0, "success_rate": 0.0}]
