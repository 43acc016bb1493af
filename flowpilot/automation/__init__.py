"""
Browser automation: flow driver, page handlers and the tiered action executor.
"""

from .browser import BrowserSession
from .executor import TieredActionExecutor
from .flow_driver import FlowDriver
from .registry import find_handler, is_end_state

__all__ = ["BrowserSession", "TieredActionExecutor", "FlowDriver", "find_handler", "is_end_state"]
