#!/usr/bin/env python3
"""
Onboarding Flow Pilot - Main Entry Point

Drives one synthetic persona through the business formation signup funnel
and writes the structured result into a run directory.

Usage:
    python main.py                          # Run with config/config.yaml
    python main.py --config my.yaml         # Run with a specific config file
    python main.py --goal accept_all        # Accept every upsell offer
    python main.py --upsell ein_service     # Accept one upsell, decline the rest
    python main.py --version                # Show version
"""

import argparse
import asyncio
import sys

from loguru import logger
from pydantic import ValidationError

from flowpilot import __version__
from flowpilot.config import Config, reload_config
from flowpilot.models import TestGoals
from flowpilot.runner import FlowRunner
from flowpilot.utils.logger import setup_logger


def build_goals(config: Config, args: argparse.Namespace) -> TestGoals:
    """Apply command line overrides on top of the configured test goals."""
    goals = config.goals
    updates = {}
    if args.goal:
        updates["upsell_strategy"] = args.goal
    if args.package:
        updates["package_preference"] = args.package
    if args.upsell:
        upsells = dict(goals.upsells)
        for key in args.upsell:
            upsells[key] = True
        updates["upsells"] = upsells
    if args.apply_banking:
        updates["apply_for_banking"] = True
    return goals.model_copy(update=updates) if updates else goals


async def run_flow_async(config: Config, goals: TestGoals) -> bool:
    runner = FlowRunner(config, goals)
    result = await runner.run()
    if result.success:
        logger.success(f"🎉 Flow completed in {result.step_count} steps")
    else:
        logger.error(f"❌ Flow failed ({result.error_type}): {result.error}")
    return result.success


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Onboarding Flow Pilot - QA automation for the business formation signup flow"
    )
    parser.add_argument(
        "--version", "-v",
        action="store_true",
        help="Show version and exit"
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to config YAML (default: config/config.yaml)"
    )
    parser.add_argument(
        "--goal",
        choices=["decline_all", "accept_all"],
        help="Upsell strategy for offers without an explicit decision"
    )
    parser.add_argument(
        "--package",
        choices=["starter", "pro", "premium"],
        help="Package to select"
    )
    parser.add_argument(
        "--upsell",
        action="append",
        metavar="KEY",
        help="Accept the given upsell (repeatable), e.g. ein_service"
    )
    parser.add_argument(
        "--apply-banking",
        action="store_true",
        help="Apply for business banking from the confirmation page"
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run the browser headless"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    if args.version:
        print(f"Onboarding Flow Pilot v{__version__}")
        sys.exit(0)

    try:
        config = reload_config(args.config)
    except (FileNotFoundError, ValidationError) as e:
        logger.error(f"❌ Could not load configuration: {e}")
        sys.exit(1)

    if args.headless:
        config.browser.headless = True

    setup_logger(config, debug=args.debug)
    logger.info(f"Onboarding Flow Pilot v{__version__}")

    try:
        success = asyncio.run(run_flow_async(config, build_goals(config, args)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        success = False

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
