"""
RuleKeeper Index Package

In-memory host to ruleset lookup built from the live database.
"""

from .ruleset_index import RulesetIndex

__all__ = [
    "RulesetIndex",
]
