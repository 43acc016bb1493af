"""
Onboarding Flow Pilot - QA automation for the business formation signup funnel.

Drives synthetic personas through the funnel with a tiered
direct/semantic/vision action executor.
"""

__version__ = "1.0.0"
__author__ = "Flow Pilot QA"
