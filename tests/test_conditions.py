"""
Tests for the condition system: path resolution, operators and evaluator.
"""

import pytest

from bizflow.automation.conditions.evaluator import ConditionEvaluator, evaluate_conditions
from bizflow.automation.conditions.operators import MalformedOperand, OperatorRegistry, compare
from bizflow.automation.conditions.paths import ABSENT, is_absent, resolve_field
from bizflow.automation.types import Condition, ConditionOperator


class TestFieldPaths:
    """Tests for dot-path resolution."""

    def test_nested_mapping(self):
        payload = {"client": {"name": "Ana", "address": {"city": "Lisbon"}}}
        assert resolve_field(payload, "client.name") == "Ana"
        assert resolve_field(payload, "client.address.city") == "Lisbon"

    def test_list_index(self):
        payload = {"client": {"tags": ["vip", "new"]}}
        assert resolve_field(payload, "client.tags.1") == "new"
        assert is_absent(resolve_field(payload, "client.tags.5"))
        assert is_absent(resolve_field(payload, "client.tags.first"))

    def test_missing_is_absent_not_none(self):
        payload = {"client": {"email": None}}
        assert resolve_field(payload, "client.email") is None
        assert resolve_field(payload, "client.phone") is ABSENT
        assert resolve_field(payload, "client.email.domain") is ABSENT

    def test_empty_path(self):
        assert resolve_field({"a": 1}, "") is ABSENT

    def test_absent_is_falsy_singleton(self):
        assert not ABSENT
        assert repr(ABSENT) == "ABSENT"


class TestOperators:
    """Tests for comparison operators."""

    def test_equals(self):
        assert compare(100, "equals", 100)
        assert not compare(100, "equals", 101)
        assert compare({"a": [1, 2]}, "equals", {"a": [1, 2]})

    def test_equals_keeps_booleans_apart(self):
        assert not compare(True, "equals", 1)
        assert not compare(0, "equals", False)
        assert compare(True, "equals", True)

    def test_equals_absent(self):
        assert not compare(ABSENT, "equals", None)
        assert compare(ABSENT, "not_equals", None)

    def test_greater_and_less_than(self):
        assert compare(150, "greater_than", 100)
        assert not compare(100, "greater_than", 100)
        assert compare("50", "less_than", 100)
        assert not compare("abc", "greater_than", 1)
        assert not compare(ABSENT, "less_than", 1)
        assert not compare(True, "greater_than", 0)

    def test_contains(self):
        assert compare("premium client", "contains", "premium")
        assert compare(["vip", "new"], "contains", "vip")
        assert not compare("basic", "contains", "premium")
        assert not compare(ABSENT, "contains", "x")
        assert compare(ABSENT, "not_contains", "x")

    def test_in(self):
        assert compare("gold", "in", ["gold", "silver"])
        assert compare("gold", "in", "gold, silver")
        assert compare("gold", "in", {"gold": 1})
        assert not compare(1, "in", [True])
        assert not compare(ABSENT, "in", ["gold"])

    def test_in_malformed_operand(self):
        with pytest.raises(MalformedOperand):
            compare("gold", "in", 5)

    def test_null_checks(self):
        assert compare(None, "is_null", None)
        assert compare(ABSENT, "is_null", None)
        assert not compare("", "is_null", None)
        assert compare(0, "is_not_null", None)

    def test_enum_and_string_lookup(self):
        registry = OperatorRegistry()
        assert registry.supports(ConditionOperator.IN)
        assert registry.supports("not_in")
        assert not registry.supports("matches")

    def test_unknown_operator_raises(self):
        with pytest.raises(ValueError):
            compare(1, "matches", 1)


class TestConditionEvaluator:
    """Tests for the fail-closed evaluator."""

    @pytest.fixture
    def evaluator(self):
        return ConditionEvaluator()

    def test_nested_equals(self, evaluator):
        condition = Condition(field="client.tier", operator="equals", value="gold")
        assert evaluator.evaluate(condition, {"client": {"tier": "gold"}})
        assert not evaluator.evaluate(condition, {"client": {"tier": "silver"}})

    def test_greater_than_scenario(self, evaluator):
        condition = Condition(field="amount", operator="greater_than", value=100)
        assert evaluator.evaluate(condition, {"amount": 150})
        assert not evaluator.evaluate(condition, {"amount": 50})

    def test_unknown_operator_is_false(self, evaluator):
        condition = Condition(field="amount", operator="matches", value=1)
        assert evaluator.evaluate(condition, {"amount": 1}) is False

    def test_malformed_operand_is_false_both_ways(self, evaluator):
        payload = {"tier": "gold"}
        assert not evaluator.evaluate(Condition("tier", "in", 42), payload)
        assert not evaluator.evaluate(Condition("tier", "not_in", 42), payload)

    def test_evaluate_all_is_and(self, evaluator):
        conditions = [
            Condition("amount", "greater_than", 100),
            Condition("client.tier", "equals", "gold"),
        ]
        assert evaluator.evaluate_all(conditions, {"amount": 150, "client": {"tier": "gold"}})
        assert not evaluator.evaluate_all(conditions, {"amount": 150, "client": {"tier": "silver"}})

    def test_empty_conditions_are_true(self, evaluator):
        assert evaluator.evaluate_all([], {})
        assert evaluate_conditions(None, {})

    def test_explain_reports_every_condition(self, evaluator):
        conditions = [
            Condition("amount", "greater_than", 100),
            Condition("missing", "is_null"),
        ]
        results = evaluator.explain(conditions, {"amount": 10})
        assert [r["result"] for r in results] == [False, True]
        assert results[0]["operator"] == "greater_than"
