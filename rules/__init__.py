"""
Auto-score Rules Package

Rules that periodically award or deduct points for ledger members,
optionally filtered by conditions over each member's name and balance.
"""

from .rule_engine import (
    RuleEngine,
    AutoScoreRule,
    RuleRunResult,
    Condition,
    ConditionGroup,
    ConditionOperator,
    LogicalOperator,
    RuleEngineError,
    RuleNotFoundError,
    InvalidRuleError,
)

__all__ = [
    "RuleEngine",
    "AutoScoreRule",
    "RuleRunResult",
    "Condition",
    "ConditionGroup",
    "ConditionOperator",
    "LogicalOperator",
    "RuleEngineError",
    "RuleNotFoundError",
    "InvalidRuleError",
]
