"""
Unit Tests for Auto-score Rules

Tests cover:
1. Condition evaluation against member context
2. Rule validation and serialization
3. Execution against a ledger (awards, deductions, targeting)
4. Due-rule scheduling
"""

from datetime import datetime, timedelta, timezone

import pytest

from rules.rule_engine import (
    MAX_INTERVAL_MINUTES,
    AutoScoreRule,
    Condition,
    ConditionGroup,
    ConditionOperator,
    InvalidRuleError,
    LogicalOperator,
    RuleEngine,
    RuleNotFoundError,
)
from scores.service import LedgerService

START = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)


def ledger_with(*names):
    ledger = LedgerService()
    ids = [ledger.create_member(name) for name in names]
    return ledger, ids


class TestConditions:
    """Tests for condition evaluation."""

    def test_balance_comparison(self):
        """Test ordering operators on the balance field."""
        context = {"member": {"id": 1, "name": "Alice", "balance": 20}}

        assert Condition("member.balance", ConditionOperator.GREATER_THAN, 10).evaluate(context)
        assert not Condition("member.balance", ConditionOperator.LESS_THAN, 10).evaluate(context)

    def test_missing_field_never_orders(self):
        """Test that an absent field fails an ordering comparison."""
        context = {"member": {"id": 1}}

        assert not Condition("member.balance", ConditionOperator.LESS_THAN, 10).evaluate(context)

    @pytest.mark.parametrize("operator, value", [
        (ConditionOperator.GREATER_THAN, 3),
        (ConditionOperator.LESS_THAN_OR_EQUAL, 3),
        (ConditionOperator.CONTAINS, 5),
        (ConditionOperator.NOT_CONTAINS, 5),
        (ConditionOperator.IN, 5),
        (ConditionOperator.NOT_IN, 5),
    ])
    def test_mismatched_value_type_is_no_match(self, operator, value):
        """Test that comparing a name against a number is a non-match, not an error."""
        context = {"member": {"id": 1, "name": "Alice", "balance": 0}}

        assert Condition("member.name", operator, value).evaluate(context) is False

    def test_name_in_list(self):
        """Test membership operators on the name field."""
        context = {"member": {"id": 1, "name": "Alice", "balance": 0}}

        assert Condition("member.name", ConditionOperator.IN, ["Alice", "Bob"]).evaluate(context)
        assert Condition("member.name", ConditionOperator.NOT_IN, ["Bob"]).evaluate(context)

    def test_group_and_or(self):
        """Test AND, OR and the empty group."""
        context = {"member": {"id": 1, "name": "Alice", "balance": 5}}
        low = Condition("member.balance", ConditionOperator.LESS_THAN, 10)
        bob = Condition("member.name", ConditionOperator.EQUALS, "Bob")

        assert not ConditionGroup(LogicalOperator.AND, [low, bob]).evaluate(context)
        assert ConditionGroup(LogicalOperator.OR, [low, bob]).evaluate(context)
        assert ConditionGroup(LogicalOperator.AND, []).evaluate(context)


class TestRuleDefinition:
    """Tests for validation and serialization."""

    def test_zero_amount_rejected(self):
        """Test that a rule must move points."""
        engine = RuleEngine(LedgerService())

        with pytest.raises(InvalidRuleError):
            engine.add_rule(AutoScoreRule(name="Nothing", interval_minutes=10, amount=0))

    def test_non_positive_interval_rejected(self):
        """Test that the interval must be at least one minute."""
        engine = RuleEngine(LedgerService())

        with pytest.raises(InvalidRuleError):
            engine.add_rule(AutoScoreRule(name="Never", interval_minutes=0, amount=5))

    def test_oversized_interval_rejected(self):
        """Test that intervals beyond the cap are refused up front."""
        engine = RuleEngine(LedgerService())

        with pytest.raises(InvalidRuleError):
            engine.add_rule(AutoScoreRule(name="Eternal", interval_minutes=10**13, amount=5))

        rule = engine.add_rule(AutoScoreRule(
            name="Yearly", interval_minutes=MAX_INTERVAL_MINUTES, amount=5, created_at=START,
        ))
        assert engine.run_due(START + timedelta(days=1)) == []
        assert rule.last_executed is None

    def test_ids_assigned_from_one(self):
        """Test that rule ids start at 1 and increase."""
        engine = RuleEngine(LedgerService())

        first = engine.add_rule(AutoScoreRule(name="A", interval_minutes=10, amount=1))
        second = engine.add_rule(AutoScoreRule(name="B", interval_minutes=10, amount=1))

        assert (first.id, second.id) == (1, 2)

    def test_dict_round_trip_keeps_nested_conditions(self):
        """Test that nested condition groups survive serialization."""
        rule = AutoScoreRule(
            name="Low balance top-up", interval_minutes=60, amount=3, member_ids=[1, 2],
            conditions=ConditionGroup(LogicalOperator.OR, [
                Condition("member.balance", ConditionOperator.LESS_THAN, 5),
                ConditionGroup(LogicalOperator.AND, [
                    Condition("member.name", ConditionOperator.EQUALS, "Alice"),
                ]),
            ]),
            created_at=START, last_executed=START,
        )

        restored = AutoScoreRule.from_dict(rule.to_dict())

        assert restored.to_dict() == rule.to_dict()

    def test_malformed_dict_rejected(self):
        """Test that missing fields and unknown operators are reported as invalid rules."""
        with pytest.raises(InvalidRuleError):
            AutoScoreRule.from_dict({"name": "No interval", "amount": 5})
        with pytest.raises(InvalidRuleError):
            AutoScoreRule.from_dict({
                "name": "Bad operator", "interval_minutes": 5, "amount": 5,
                "conditions": {"field": "member.balance", "operator": "roughly", "value": 1},
            })


class TestExecution:
    """Tests for applying rules to the ledger."""

    def test_empty_targets_mean_everyone(self):
        """Test that a rule without member ids reaches every member."""
        ledger, ids = ledger_with("Alice", "Bob")
        engine = RuleEngine(ledger)
        rule = engine.add_rule(AutoScoreRule(name="All", interval_minutes=10, amount=4))

        result = engine.execute(rule.id, START)

        assert result.applied == ids
        assert [ledger.points_for(i) for i in ids] == [4, 4]

    def test_unknown_target_ids_skipped(self):
        """Test that ids missing from the ledger are ignored."""
        ledger, (alice,) = ledger_with("Alice")
        engine = RuleEngine(ledger)
        rule = engine.add_rule(AutoScoreRule(name="Some", interval_minutes=10, amount=2, member_ids=[alice, 42]))

        result = engine.execute(rule.id, START)

        assert result.applied == [alice]
        assert result.rejected == []

    def test_negative_amount_deducts_and_reports_rejections(self):
        """Test that an overdrawing deduction is reported, not raised."""
        ledger, (alice, bob) = ledger_with("Alice", "Bob")
        ledger.add_points(alice, 10)
        engine = RuleEngine(ledger)
        rule = engine.add_rule(AutoScoreRule(name="Fee", interval_minutes=10, amount=-3))

        result = engine.execute(rule.id, START)

        assert result.applied == [alice]
        assert result.rejected == [bob]
        assert ledger.points_for(alice) == 7
        assert ledger.points_for(bob) == 0

    def test_conditions_filter_members(self):
        """Test that only members passing the conditions are touched."""
        ledger, (alice, bob) = ledger_with("Alice", "Bob")
        ledger.add_points(bob, 50)
        engine = RuleEngine(ledger)
        rule = engine.add_rule(AutoScoreRule(
            name="Catch-up", interval_minutes=10, amount=5,
            conditions=Condition("member.balance", ConditionOperator.LESS_THAN, 20),
        ))

        result = engine.execute(rule.id, START)

        assert result.applied == [alice]
        assert ledger.points_for(bob) == 50

    def test_mistyped_condition_runs_once_and_stamps(self):
        """Test that a name-vs-number condition neither crashes nor repeats awards."""
        ledger, (empty, alice) = ledger_with("", "Alice")
        engine = RuleEngine(ledger)
        engine.add_rule(AutoScoreRule(
            name="Odd", interval_minutes=10, amount=5, created_at=START,
            conditions=Condition("member.name", ConditionOperator.NOT_CONTAINS, 5),
        ))

        first = engine.run_due(START + timedelta(minutes=10))
        second = engine.run_due(START + timedelta(minutes=15))

        assert [r.applied for r in first] == [[empty]]
        assert second == []
        assert ledger.points_for(empty) == 5
        assert ledger.points_for(alice) == 0
        assert engine.get_rule(1).last_executed == START + timedelta(minutes=10)

    def test_mistyped_rule_does_not_block_other_due_rules(self):
        """Test that every due rule still runs alongside a mistyped one."""
        ledger, (alice,) = ledger_with("Alice")
        engine = RuleEngine(ledger)
        engine.add_rule(AutoScoreRule(
            name="Odd", interval_minutes=10, amount=5, created_at=START,
            conditions=Condition("member.name", ConditionOperator.GREATER_THAN, 3),
        ))
        engine.add_rule(AutoScoreRule(name="Good", interval_minutes=10, amount=2, created_at=START))

        results = engine.run_due(START + timedelta(minutes=10))

        assert [(r.rule_id, r.applied) for r in results] == [(1, []), (2, [alice])]
        assert ledger.points_for(alice) == 2

    def test_execution_notifies_ledger_listeners(self):
        """Test that rule awards go through the ledger's notifications."""
        ledger, (alice,) = ledger_with("Alice")
        calls = []
        ledger.subscribe(lambda member_id, balance: calls.append((member_id, balance)))
        engine = RuleEngine(ledger)
        rule = engine.add_rule(AutoScoreRule(name="All", interval_minutes=10, amount=1))

        engine.execute(rule.id, START)

        assert calls == [(alice, 1)]

    def test_unknown_rule(self):
        """Test that unknown rule ids raise RuleNotFoundError."""
        engine = RuleEngine(LedgerService())

        with pytest.raises(RuleNotFoundError):
            engine.execute(7)
        with pytest.raises(RuleNotFoundError):
            engine.remove_rule(7)


class TestScheduling:
    """Tests for due-rule selection."""

    def test_rule_due_after_interval_since_creation(self):
        """Test that a new rule first fires one interval after creation."""
        ledger, (alice,) = ledger_with("Alice")
        engine = RuleEngine(ledger)
        engine.add_rule(AutoScoreRule(name="Hourly", interval_minutes=60, amount=1, created_at=START))

        assert engine.run_due(START + timedelta(minutes=59)) == []
        results = engine.run_due(START + timedelta(minutes=60))

        assert [r.rule_id for r in results] == [1]
        assert ledger.points_for(alice) == 1

    def test_execution_resets_the_clock(self):
        """Test that the next run is measured from the last execution."""
        ledger, (alice,) = ledger_with("Alice")
        engine = RuleEngine(ledger)
        rule = engine.add_rule(AutoScoreRule(name="Hourly", interval_minutes=60, amount=1, created_at=START))

        engine.run_due(START + timedelta(minutes=90))

        assert rule.last_executed == START + timedelta(minutes=90)
        assert engine.due_rules(START + timedelta(minutes=120)) == []
        assert engine.due_rules(START + timedelta(minutes=150)) == [rule]

    def test_disabled_rules_never_due(self):
        """Test that disabling a rule removes it from scheduling."""
        engine = RuleEngine(LedgerService())
        rule = engine.add_rule(AutoScoreRule(name="Off", interval_minutes=1, amount=1, created_at=START))

        engine.set_enabled(rule.id, False)

        assert engine.due_rules(START + timedelta(days=1)) == []
