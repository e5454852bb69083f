"""Collection rule evaluation engine.

Evaluates a collection's rules against item snapshots. Rules are compiled
once per evaluation batch: the rule value is parsed and the comparison
function is looked up in the static tables of comparators.py.

A malformed rule (unknown type, operator not valid for the type, value that
does not parse) never raises here. It evaluates to False for every item and
is logged with the rule id and item id.
"""
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple
from uuid import UUID

import structlog

from collection_engine.db.models import MatchMode, RuleOperator, RuleType
from collection_engine.errors.exceptions import EvaluationError, ValidationError
from collection_engine.services.catalog import ItemSnapshot
from collection_engine.services.rules.comparators import (
    ATTRIBUTE_GETTERS,
    AttributeKind,
    COMPARATORS,
    RULE_TYPE_KINDS,
    VALUE_PARSERS,
)

logger = structlog.get_logger(__name__)


class RuleLike(Protocol):
    """Anything shaped like a collection rule (ORM row or RuleDefinition)."""
    id: Any
    rule_type: Any
    operator: Any
    value: str


@dataclass(frozen=True)
class RuleDefinition:
    """Plain rule value object, used for evaluation outside the database."""
    rule_type: RuleType
    operator: RuleOperator
    value: str
    id: Optional[UUID] = None


@dataclass(frozen=True)
class CompiledRule:
    """A rule with its comparator resolved and its value parsed.

    Attributes:
        rule_id: Id of the source rule (for diagnostics)
        getter: Selects the compared attribute from an item
        comparator: Comparison function from COMPARATORS
        target: Parsed rule value
        error: Set when the rule is malformed; the rule then never matches
    """
    rule_id: Optional[Any]
    getter: Optional[Callable[[ItemSnapshot], Any]] = None
    comparator: Optional[Callable[[Any, Any], bool]] = None
    target: Any = None
    error: Optional[str] = None

    def matches(self, item: ItemSnapshot) -> bool:
        if self.error is not None:
            logger.debug(
                "rule_evaluation_failed",
                rule_id=str(self.rule_id) if self.rule_id is not None else None,
                item_id=str(item.id),
                error=self.error,
            )
            return False
        try:
            return bool(self.comparator(self.getter(item), self.target))
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.debug(
                "rule_evaluation_failed",
                rule_id=str(self.rule_id) if self.rule_id is not None else None,
                item_id=str(item.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False


def _coerce_rule_type(value: Any) -> RuleType:
    try:
        return value if isinstance(value, RuleType) else RuleType(value)
    except ValueError as e:
        raise EvaluationError(f"Unknown rule type: {value!r}") from e


def _coerce_operator(value: Any) -> RuleOperator:
    try:
        return value if isinstance(value, RuleOperator) else RuleOperator(value)
    except ValueError as e:
        raise EvaluationError(f"Unknown operator: {value!r}") from e


def _resolve(rule_type: Any, operator: Any, value: str) -> Tuple[RuleType, RuleOperator, Callable[[Any, Any], bool], Any]:
    """Resolve a (type, operator, value) triple against the dispatch tables.

    Raises:
        EvaluationError: If the combination is invalid or the value does not parse
    """
    rtype = _coerce_rule_type(rule_type)
    roperator = _coerce_operator(operator)
    kind = RULE_TYPE_KINDS[rtype]
    comparator = COMPARATORS.get((kind, roperator))
    if comparator is None:
        raise EvaluationError(
            f"Operator '{roperator.value}' is not valid for rule type '{rtype.value}'"
        )
    target = VALUE_PARSERS[kind](value)
    return rtype, roperator, comparator, target


def compile_rule(rule: RuleLike) -> CompiledRule:
    """Compile a single rule; malformed rules compile to a never-matching rule."""
    rule_id = getattr(rule, "id", None)
    try:
        rtype, _, comparator, target = _resolve(rule.rule_type, rule.operator, rule.value)
    except EvaluationError as e:
        return CompiledRule(rule_id=rule_id, error=e.message)
    return CompiledRule(
        rule_id=rule_id,
        getter=ATTRIBUTE_GETTERS[rtype],
        comparator=comparator,
        target=target,
    )


def validate_rule(rule_type: Any, operator: Any, value: str) -> Tuple[RuleType, RuleOperator, str]:
    """Validate a rule at save time.

    Args:
        rule_type: RuleType or its string value
        operator: RuleOperator or its string value
        value: Raw rule value

    Returns:
        Tuple of (RuleType, RuleOperator, value with surrounding whitespace
        stripped for non-text kinds)

    Raises:
        ValidationError: If the rule would be malformed at evaluation time
    """
    try:
        rtype, roperator, _, _ = _resolve(rule_type, operator, value)
    except EvaluationError as e:
        raise ValidationError(
            e.message,
            details={"rule_type": str(rule_type), "operator": str(operator), "value": value},
        ) from e
    cleaned = value if RULE_TYPE_KINDS[rtype] == AttributeKind.TEXT else value.strip()
    return rtype, roperator, cleaned


class RuleEvaluator:
    """Evaluates collection rules against item snapshots."""

    def evaluate(self, rules: Sequence[RuleLike], match_mode: MatchMode, item: ItemSnapshot) -> bool:
        """Check whether an item satisfies a rule set.

        An empty rule set matches nothing: collections without rules only
        hold manually pinned items.

        Args:
            rules: The collection's rules (order does not matter)
            match_mode: ALL (AND, stops at first False) or ANY (OR, stops at first True)
            item: The item to check

        Returns:
            True if the item matches
        """
        return self._matches(self._compile(rules), match_mode, item)

    def evaluate_batch(
        self,
        rules: Sequence[RuleLike],
        match_mode: MatchMode,
        items: Sequence[ItemSnapshot],
    ) -> List[ItemSnapshot]:
        """Return the items matching the rule set, preserving input order."""
        if not rules:
            return []
        compiled = self._compile(rules)
        return [item for item in items if self._matches(compiled, match_mode, item)]

    @staticmethod
    def _compile(rules: Sequence[RuleLike]) -> List[CompiledRule]:
        """Compile a rule set, warning once about any malformed rules in it."""
        compiled = [compile_rule(r) for r in rules]
        broken = [c for c in compiled if c.error is not None]
        if broken:
            logger.warning(
                "malformed_rules_detected",
                rule_ids=[str(c.rule_id) for c in broken],
                errors=[c.error for c in broken],
            )
        return compiled

    @staticmethod
    def _matches(compiled: List[CompiledRule], match_mode: MatchMode, item: ItemSnapshot) -> bool:
        if not compiled:
            return False
        if match_mode == MatchMode.ALL:
            return all(rule.matches(item) for rule in compiled)
        # ANY
        return any(rule.matches(item) for rule in compiled)
