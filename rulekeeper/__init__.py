"""
RuleKeeper

Secure updater for the locally stored ruleset database.
"""

__version__ = "0.1.0"
