"""
RuleKeeper Storage Package

Live ruleset database models and connection management.
"""

from .database import DatabaseManager
from .models import Base, Ruleset, Target, SystemState

__all__ = [
    "DatabaseManager",
    "Base",
    "Ruleset",
    "Target",
    "SystemState",
]
