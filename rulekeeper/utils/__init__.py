"""
RuleKeeper Utilities Package
"""

from .helpers import format_bytes, generate_uuid, get_current_timestamp

__all__ = ["format_bytes", "generate_uuid", "get_current_timestamp"]
