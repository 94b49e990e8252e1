"""
RuleKeeper API Package
"""

from .main import create_app

__all__ = ["create_app"]
