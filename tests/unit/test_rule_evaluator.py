"""Unit tests for the collection rule evaluator.

Tests cover:
    - ALL / ANY semantics and short-circuiting
    - Empty rule sets
    - Per-kind comparison semantics (reference, tags, text, numbers, dates)
    - Fail-closed handling of malformed rules
    - Save-time validation
"""
import pytest
from unittest.mock import patch
from uuid import uuid4

from collection_engine.db.models import MatchMode, RuleOperator, RuleType
from collection_engine.errors.exceptions import ValidationError
from collection_engine.services.rules import (
    RuleDefinition,
    RuleEvaluator,
    compile_rule,
    valid_operators,
    validate_rule,
)


def rule(rule_type, operator, value, rule_id=None):
    return RuleDefinition(rule_type=rule_type, operator=operator, value=value, id=rule_id or uuid4())


@pytest.fixture
def evaluator():
    return RuleEvaluator()


class TestMatchModes:
    """ALL / ANY combination of rules."""

    def test_empty_rules_match_nothing(self, evaluator, item_factory):
        item = item_factory()
        assert evaluator.evaluate([], MatchMode.ALL, item) is False
        assert evaluator.evaluate([], MatchMode.ANY, item) is False
        assert evaluator.evaluate_batch([], MatchMode.ANY, [item]) == []

    def test_all_requires_every_rule(self, evaluator, item_factory):
        cat = uuid4()
        rules = [
            rule(RuleType.CATEGORY, RuleOperator.EQUALS, str(cat)),
            rule(RuleType.PRICE, RuleOperator.LESS_THAN, "50"),
        ]
        a = item_factory("A", "30", category_id=cat)
        b = item_factory("B", "80", category_id=cat)
        d = item_factory("D", "10", category_id=uuid4())

        assert evaluator.evaluate_batch(rules, MatchMode.ALL, [a, b, d]) == [a]

    def test_any_requires_one_rule(self, evaluator, item_factory):
        cat = uuid4()
        rules = [
            rule(RuleType.CATEGORY, RuleOperator.EQUALS, str(cat)),
            rule(RuleType.PRICE, RuleOperator.LESS_THAN, "50"),
        ]
        a = item_factory("A", "30", category_id=cat)
        b = item_factory("B", "80", category_id=cat)
        d = item_factory("D", "10", category_id=uuid4())
        e = item_factory("E", "999", category_id=uuid4())

        assert evaluator.evaluate_batch(rules, MatchMode.ANY, [a, b, d, e]) == [a, b, d]

    def test_all_stops_at_first_false(self, evaluator, item_factory):
        rules = [
            rule(RuleType.PRICE, RuleOperator.GREATER_THAN, "100"),
            rule(RuleType.TITLE, RuleOperator.CONTAINS, "x"),
        ]
        compiled = [compile_rule(r) for r in rules]
        item = item_factory("xyz", "10")
        with patch.object(type(compiled[0]), "matches", autospec=True, return_value=False) as spy:
            assert RuleEvaluator._matches(compiled, MatchMode.ALL, item) is False
        # Only the first (failing) rule was evaluated
        assert spy.call_count == 1

    def test_any_stops_at_first_true(self, evaluator, item_factory):
        rules = [
            rule(RuleType.PRICE, RuleOperator.LESS_THAN, "100"),
            rule(RuleType.TITLE, RuleOperator.CONTAINS, "nothing"),
        ]
        compiled = [compile_rule(r) for r in rules]
        with patch.object(type(compiled[0]), "matches", autospec=True, return_value=True) as spy:
            assert RuleEvaluator._matches(compiled, MatchMode.ANY, item_factory()) is True
        assert spy.call_count == 1


class TestComparisons:
    """Comparison semantics per attribute kind."""

    def test_reference_equals_is_case_insensitive_on_ids(self, evaluator, item_factory):
        vendor = uuid4()
        item = item_factory(vendor_id=vendor)
        assert evaluator.evaluate([rule(RuleType.VENDOR, RuleOperator.EQUALS, str(vendor).upper())], MatchMode.ALL, item)

    def test_missing_reference_only_matches_not_equals(self, evaluator, item_factory):
        item = item_factory(category_id=None)
        other = str(uuid4())
        assert not evaluator.evaluate([rule(RuleType.CATEGORY, RuleOperator.EQUALS, other)], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.CATEGORY, RuleOperator.NOT_EQUALS, other)], MatchMode.ALL, item)

    def test_tag_membership(self, evaluator, item_factory):
        sale, new = uuid4(), uuid4()
        item = item_factory(tag_ids=[sale])
        assert evaluator.evaluate([rule(RuleType.TAG, RuleOperator.EQUALS, str(sale))], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.TAG, RuleOperator.CONTAINS, str(sale))], MatchMode.ALL, item)
        assert not evaluator.evaluate([rule(RuleType.TAG, RuleOperator.EQUALS, str(new))], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.TAG, RuleOperator.NOT_CONTAINS, str(new))], MatchMode.ALL, item)

    def test_text_operators(self, evaluator, item_factory):
        item = item_factory("Linen Shirt Blue", sku="LS-001")
        assert evaluator.evaluate([rule(RuleType.TITLE, RuleOperator.CONTAINS, "shirt")], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.TITLE, RuleOperator.STARTS_WITH, "LINEN")], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.TITLE, RuleOperator.NOT_CONTAINS, "wool")], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.SKU, RuleOperator.EQUALS, "LS-001")], MatchMode.ALL, item)
        # equals is exact
        assert not evaluator.evaluate([rule(RuleType.SKU, RuleOperator.EQUALS, "ls-001")], MatchMode.ALL, item)

    def test_numbers_are_compared_numerically(self, evaluator, item_factory):
        item = item_factory(price="9.50")
        assert evaluator.evaluate([rule(RuleType.PRICE, RuleOperator.LESS_THAN, "10")], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.PRICE, RuleOperator.EQUALS, "9.5")], MatchMode.ALL, item)
        assert evaluator.evaluate([rule(RuleType.PRICE, RuleOperator.GREATER_OR_EQUAL, "9.50")], MatchMode.ALL, item)
        assert not evaluator.evaluate([rule(RuleType.PRICE, RuleOperator.GREATER_THAN, "9.5")], MatchMode.ALL, item)

    def test_missing_compare_at_price_never_matches_ordering(self, evaluator, item_factory):
        item = item_factory(compare_at_price=None)
        assert not evaluator.evaluate(
            [rule(RuleType.COMPARE_AT_PRICE, RuleOperator.GREATER_THAN, "0")], MatchMode.ALL, item
        )

    def test_dates(self, evaluator, item_factory):
        item = item_factory(minutes=60)  # 2026-01-01T01:00Z
        assert evaluator.evaluate(
            [rule(RuleType.CREATED_AT, RuleOperator.GREATER_THAN, "2026-01-01T00:30:00Z")], MatchMode.ALL, item
        )
        assert evaluator.evaluate(
            [rule(RuleType.CREATED_AT, RuleOperator.LESS_THAN, "2026-01-02")], MatchMode.ALL, item
        )

    def test_status_rule(self, evaluator, item_factory):
        item = item_factory(status="active")
        assert evaluator.evaluate([rule(RuleType.STATUS, RuleOperator.EQUALS, "active")], MatchMode.ALL, item)


class TestMalformedRules:
    """Malformed rules evaluate to False and never raise."""

    def test_unparsable_price_is_false_and_logged(self, evaluator, item_factory):
        rule_id = uuid4()
        item = item_factory(price="1")
        with patch("collection_engine.services.rules.evaluator.logger") as mock_logger:
            result = evaluator.evaluate(
                [rule(RuleType.PRICE, RuleOperator.LESS_THAN, "abc", rule_id=rule_id)], MatchMode.ALL, item
            )
        assert result is False
        mock_logger.debug.assert_called_once()
        args, kwargs = mock_logger.debug.call_args
        assert args[0] == "rule_evaluation_failed"
        assert kwargs["rule_id"] == str(rule_id)
        assert kwargs["item_id"] == str(item.id)

    def test_batch_warns_once_per_rule_set(self, evaluator, item_factory):
        rule_id = uuid4()
        items = [item_factory(f"Shirt {n}") for n in range(25)]
        rules = [
            rule(RuleType.PRICE, RuleOperator.LESS_THAN, "abc", rule_id=rule_id),
            rule(RuleType.TITLE, RuleOperator.CONTAINS, "shirt"),
        ]
        with patch("collection_engine.services.rules.evaluator.logger") as mock_logger:
            matched = evaluator.evaluate_batch(rules, MatchMode.ANY, items)

        assert matched == items
        mock_logger.warning.assert_called_once()
        args, kwargs = mock_logger.warning.call_args
        assert args[0] == "malformed_rules_detected"
        assert kwargs["rule_ids"] == [str(rule_id)]
        # Per-item failures stay at debug level
        assert mock_logger.debug.call_count == len(items)

    def test_operator_not_valid_for_type(self, evaluator, item_factory):
        # Ordering operators only apply to numbers and dates
        assert evaluator.evaluate(
            [rule(RuleType.TITLE, RuleOperator.GREATER_THAN, "a")], MatchMode.ANY, item_factory("b")
        ) is False

    def test_unknown_rule_type_string(self, evaluator, item_factory):
        broken = RuleDefinition(rule_type="inventory", operator="equals", value="1")
        assert evaluator.evaluate([broken], MatchMode.ANY, item_factory()) is False

    def test_malformed_rule_under_any_does_not_block_others(self, evaluator, item_factory):
        rules = [
            rule(RuleType.PRICE, RuleOperator.LESS_THAN, "abc"),
            rule(RuleType.TITLE, RuleOperator.CONTAINS, "shirt"),
        ]
        assert evaluator.evaluate(rules, MatchMode.ANY, item_factory("Shirt")) is True
        assert evaluator.evaluate(rules, MatchMode.ALL, item_factory("Shirt")) is False


class TestValidateRule:
    """Save-time validation."""

    def test_accepts_and_normalizes(self):
        rtype, roperator, value = validate_rule("price", "less_than", " 20 ")
        assert rtype == RuleType.PRICE
        assert roperator == RuleOperator.LESS_THAN
        assert value == "20"

    def test_text_values_keep_whitespace(self):
        _, _, value = validate_rule(RuleType.TITLE, RuleOperator.CONTAINS, " linen ")
        assert value == " linen "

    @pytest.mark.parametrize(
        "rule_type,operator,value",
        [
            ("price", "less_than", "abc"),
            ("title", "greater_than", "x"),
            ("inventory", "equals", "1"),
            ("created_at", "equals", "yesterday"),
            ("category", "equals", "   "),
        ],
    )
    def test_rejects_malformed(self, rule_type, operator, value):
        with pytest.raises(ValidationError):
            validate_rule(rule_type, operator, value)

    def test_valid_operators_for_tags(self):
        assert valid_operators(RuleType.TAG) == (
            RuleOperator.EQUALS,
            RuleOperator.NOT_EQUALS,
            RuleOperator.CONTAINS,
            RuleOperator.NOT_CONTAINS,
        )
