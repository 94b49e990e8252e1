"""
RuleKeeper API Routes
"""
