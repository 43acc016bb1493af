"""
CAPTCHA detection and solving.
"""

from .gate import CaptchaGate
from .solver import CaptchaSolver

__all__ = ["CaptchaGate", "CaptchaSolver"]
