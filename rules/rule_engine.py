import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from operator import eq, ge, gt, le, lt, ne
from typing import Any, Union, Optional

from scores.models import Member
from scores.service import LedgerService

logger = logging.getLogger(__name__)


class RuleEngineError(Exception):
    pass


class RuleNotFoundError(RuleEngineError):
    pass


class InvalidRuleError(RuleEngineError):
    pass


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


MAX_INTERVAL_MINUTES = 366 * 24 * 60


def _contains(container: Any, item: Any) -> bool:
    return bool(container) and item in container


# operator -> predicate(field_value, compare_value)
OPERATOR_PREDICATES = {
    ConditionOperator.EQUALS: eq,
    ConditionOperator.NOT_EQUALS: ne,
    ConditionOperator.GREATER_THAN: gt,
    ConditionOperator.LESS_THAN: lt,
    ConditionOperator.GREATER_THAN_OR_EQUAL: ge,
    ConditionOperator.LESS_THAN_OR_EQUAL: le,
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: lambda field_value, value: not _contains(field_value, value),
    ConditionOperator.IN: lambda field_value, value: _contains(value, field_value),
    ConditionOperator.NOT_IN: lambda field_value, value: not _contains(value, field_value),
    ConditionOperator.IS_TRUE: lambda field_value, _: bool(field_value),
    ConditionOperator.IS_FALSE: lambda field_value, _: not field_value,
}


def member_context(member: Member) -> dict:
    return {"member": {"id": member.id, "name": member.name, "balance": member.balance}}


def lookup(context: dict, field_path: str) -> Any:
    value = context
    for part in field_path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


@dataclass
class Condition:
    """Compare one dotted field of the member context against ``value``.

    Missing fields and values of an incomparable type never match.
    """
    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, context: dict) -> bool:
        field_value = lookup(context, self.field)
        try:
            return bool(OPERATOR_PREDICATES[self.operator](field_value, self.value))
        except TypeError:
            return False

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(field=data["field"], operator=ConditionOperator(data["operator"]), value=data.get("value"))


@dataclass
class ConditionGroup:
    operator: LogicalOperator
    conditions: list[Union[Condition, "ConditionGroup"]]

    def evaluate(self, context: dict) -> bool:
        if not self.conditions:
            return True
        results = [cond.evaluate(context) for cond in self.conditions]
        return all(results) if self.operator == LogicalOperator.AND else any(results)

    def to_dict(self) -> dict:
        return {"operator": self.operator.value, "conditions": [c.to_dict() for c in self.conditions]}

    @classmethod
    def from_dict(cls, data: dict) -> "ConditionGroup":
        return cls(
            operator=LogicalOperator(data["operator"]),
            conditions=[parse_conditions(c) for c in data["conditions"]],
        )


def parse_conditions(data: dict) -> Union[Condition, ConditionGroup]:
    if "operator" in data and "conditions" in data:
        return ConditionGroup.from_dict(data)
    return Condition.from_dict(data)


@dataclass
class AutoScoreRule:
    """Periodically award (positive ``amount``) or deduct (negative) points.

    An empty ``member_ids`` targets every member known to the ledger at
    execution time.
    """
    name: str
    interval_minutes: int
    amount: int
    member_ids: list[int] = field(default_factory=list)
    conditions: Optional[Union[Condition, ConditionGroup]] = None
    enabled: bool = True
    id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_executed: Optional[datetime] = None

    def validate(self) -> None:
        if not 0 < self.interval_minutes <= MAX_INTERVAL_MINUTES:
            raise InvalidRuleError(
                f"interval_minutes must be between 1 and {MAX_INTERVAL_MINUTES}, got {self.interval_minutes}"
            )
        if self.amount == 0:
            raise InvalidRuleError("amount must be non-zero")

    def is_due(self, now: datetime) -> bool:
        if not self.enabled:
            return False
        since = self.last_executed or self.created_at
        return now - since >= timedelta(minutes=self.interval_minutes)

    def matches(self, member: Member) -> bool:
        if self.conditions is None:
            return True
        return self.conditions.evaluate(member_context(member))

    def to_dict(self) -> dict:
        return {
            "id": self.id, "name": self.name, "interval_minutes": self.interval_minutes,
            "amount": self.amount, "member_ids": list(self.member_ids),
            "conditions": self.conditions.to_dict() if self.conditions else None,
            "enabled": self.enabled, "created_at": self.created_at.isoformat(),
            "last_executed": self.last_executed.isoformat() if self.last_executed else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AutoScoreRule":
        try:
            cond_data = data.get("conditions")
            rule = cls(
                id=data.get("id"), name=data["name"],
                interval_minutes=int(data["interval_minutes"]), amount=int(data["amount"]),
                member_ids=[int(i) for i in data.get("member_ids") or []],
                conditions=parse_conditions(cond_data) if cond_data else None,
                enabled=data.get("enabled", True),
            )
            if data.get("created_at"):
                rule.created_at = datetime.fromisoformat(data["created_at"])
            if data.get("last_executed"):
                rule.last_executed = datetime.fromisoformat(data["last_executed"])
        except (KeyError, ValueError, TypeError) as e:
            raise InvalidRuleError(f"Malformed rule: {e}") from e
        return rule


@dataclass
class RuleRunResult:
    rule_id: int
    executed_at: datetime
    applied: list[int] = field(default_factory=list)
    rejected: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id, "executed_at": self.executed_at.isoformat(),
            "applied": list(self.applied), "rejected": list(self.rejected),
        }


class RuleEngine:
    """Holds auto-score rules and applies them to a ``LedgerService``.

    There are no timers here: the host calls ``run_due`` whenever it wants
    elapsed rules to fire.
    """

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.rules: dict[int, AutoScoreRule] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def add_rule(self, rule: AutoScoreRule) -> AutoScoreRule:
        rule.validate()
        with self._lock:
            rule.id = self._next_id
            self._next_id += 1
            self.rules[rule.id] = rule
        logger.info(f"Added rule: {rule.name}", extra={"rule_id": rule.id})
        return rule

    def remove_rule(self, rule_id: int) -> None:
        with self._lock:
            if self.rules.pop(rule_id, None) is None:
                raise RuleNotFoundError(f"Rule {rule_id} not found")

    def get_rule(self, rule_id: int) -> AutoScoreRule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    def list_rules(self) -> list[AutoScoreRule]:
        with self._lock:
            return [rule for _, rule in sorted(self.rules.items())]

    def set_enabled(self, rule_id: int, enabled: bool) -> AutoScoreRule:
        with self._lock:
            rule = self.get_rule(rule_id)
            rule.enabled = enabled
        return rule

    def due_rules(self, now: Optional[datetime] = None) -> list[AutoScoreRule]:
        now = now or datetime.now(timezone.utc)
        return [rule for rule in self.list_rules() if rule.is_due(now)]

    def run_due(self, now: Optional[datetime] = None) -> list[RuleRunResult]:
        now = now or datetime.now(timezone.utc)
        return [self.execute(rule.id, now) for rule in self.due_rules(now)]

    def execute(self, rule_id: int, now: Optional[datetime] = None) -> RuleRunResult:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            rule = self.get_rule(rule_id)
            result = RuleRunResult(rule_id=rule.id, executed_at=now)
            # conditions are settled for every target before any balance moves
            matched = [member for member in self._targets(rule) if rule.matches(member)]
            for member in matched:
                if rule.amount > 0:
                    ok = self.ledger.add_points(member.id, rule.amount)
                else:
                    ok = self.ledger.deduct_points(member.id, -rule.amount)
                (result.applied if ok else result.rejected).append(member.id)
            rule.last_executed = now
        logger.info(
            f"Executed rule {rule.name}: {len(result.applied)} applied, {len(result.rejected)} rejected",
            extra={"rule_id": rule.id},
        )
        return result

    def _targets(self, rule: AutoScoreRule) -> list[Member]:
        if not rule.member_ids:
            return self.ledger.list_members()
        members = []
        for member_id in rule.member_ids:
            member = self.ledger.find_member(member_id)
            if member:
                members.append(member)
        return members
