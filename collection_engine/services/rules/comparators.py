"""Static dispatch tables for collection rule evaluation.

Every rule type maps to one AttributeKind. A (kind, operator) pair either has
an entry in COMPARATORS or is not a valid combination. Adding a rule type
means adding it to RuleType, RULE_TYPE_KINDS and ATTRIBUTE_GETTERS.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
import operator as op
from typing import Any, Callable, Dict, Optional, Tuple

from collection_engine.db.models import RuleOperator, RuleType
from collection_engine.errors.exceptions import EvaluationError
from collection_engine.services.catalog import ItemSnapshot


class AttributeKind(str, Enum):
    """Shape of the item attribute a rule type selects."""
    REFERENCE = "reference"  # single id (category, vendor)
    MULTI = "multi"  # set of ids (tags)
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"


RULE_TYPE_KINDS: Dict[RuleType, AttributeKind] = {
    RuleType.CATEGORY: AttributeKind.REFERENCE,
    RuleType.VENDOR: AttributeKind.REFERENCE,
    RuleType.TAG: AttributeKind.MULTI,
    RuleType.PRICE: AttributeKind.NUMBER,
    RuleType.COMPARE_AT_PRICE: AttributeKind.NUMBER,
    RuleType.TITLE: AttributeKind.TEXT,
    RuleType.SKU: AttributeKind.TEXT,
    RuleType.CREATED_AT: AttributeKind.DATE,
    RuleType.STATUS: AttributeKind.TEXT,
}


def _ref(value: Any) -> Optional[str]:
    return str(value).lower() if value is not None else None


ATTRIBUTE_GETTERS: Dict[RuleType, Callable[[ItemSnapshot], Any]] = {
    RuleType.CATEGORY: lambda item: _ref(item.category_id),
    RuleType.VENDOR: lambda item: _ref(item.vendor_id),
    RuleType.TAG: lambda item: frozenset(str(t).lower() for t in item.tag_ids),
    RuleType.PRICE: lambda item: item.price,
    RuleType.COMPARE_AT_PRICE: lambda item: item.compare_at_price,
    RuleType.TITLE: lambda item: item.title or "",
    RuleType.SKU: lambda item: item.sku or "",
    RuleType.CREATED_AT: lambda item: item.created_at,
    RuleType.STATUS: lambda item: item.status or "",
}


# ---------------------------------------------------------------------------
# Rule value parsers (raise EvaluationError on malformed input)
# ---------------------------------------------------------------------------

def parse_reference(value: str) -> str:
    text = (value or "").strip().lower()
    if not text:
        raise EvaluationError("Reference value cannot be empty")
    return text


def parse_text(value: str) -> str:
    return value if value is not None else ""


def parse_number(value: str) -> Decimal:
    try:
        number = Decimal((value or "").strip())
    except (InvalidOperation, ValueError) as e:
        raise EvaluationError(f"Not a number: {value!r}") from e
    if not number.is_finite():
        raise EvaluationError(f"Not a finite number: {value!r}")
    return number


def parse_date(value: str) -> datetime:
    text = (value or "").strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise EvaluationError(f"Not an ISO-8601 date: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


VALUE_PARSERS: Dict[AttributeKind, Callable[[str], Any]] = {
    AttributeKind.REFERENCE: parse_reference,
    AttributeKind.MULTI: parse_reference,
    AttributeKind.TEXT: parse_text,
    AttributeKind.NUMBER: parse_number,
    AttributeKind.DATE: parse_date,
}


# ---------------------------------------------------------------------------
# Comparison functions: (actual attribute, parsed rule value) -> bool
# ---------------------------------------------------------------------------

def _present(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    # Items without the attribute never satisfy an ordering/equality test
    return lambda actual, target: actual is not None and compare(actual, target)


def _ordered_comparators(kind: AttributeKind) -> Dict[Tuple[AttributeKind, RuleOperator], Callable[[Any, Any], bool]]:
    return {
        (kind, RuleOperator.EQUALS): _present(op.eq),
        (kind, RuleOperator.NOT_EQUALS): _present(op.ne),
        (kind, RuleOperator.GREATER_THAN): _present(op.gt),
        (kind, RuleOperator.LESS_THAN): _present(op.lt),
        (kind, RuleOperator.GREATER_OR_EQUAL): _present(op.ge),
        (kind, RuleOperator.LESS_OR_EQUAL): _present(op.le),
    }


COMPARATORS: Dict[Tuple[AttributeKind, RuleOperator], Callable[[Any, Any], bool]] = {
    # Single reference: an item without the reference only matches not_equals
    (AttributeKind.REFERENCE, RuleOperator.EQUALS): lambda actual, target: actual == target,
    (AttributeKind.REFERENCE, RuleOperator.NOT_EQUALS): lambda actual, target: actual != target,
    # Multi-valued: set membership
    (AttributeKind.MULTI, RuleOperator.EQUALS): lambda actual, target: target in actual,
    (AttributeKind.MULTI, RuleOperator.CONTAINS): lambda actual, target: target in actual,
    (AttributeKind.MULTI, RuleOperator.NOT_EQUALS): lambda actual, target: target not in actual,
    (AttributeKind.MULTI, RuleOperator.NOT_CONTAINS): lambda actual, target: target not in actual,
    # Text
    (AttributeKind.TEXT, RuleOperator.EQUALS): lambda actual, target: actual == target,
    (AttributeKind.TEXT, RuleOperator.NOT_EQUALS): lambda actual, target: actual != target,
    (AttributeKind.TEXT, RuleOperator.CONTAINS): lambda actual, target: target.lower() in actual.lower(),
    (AttributeKind.TEXT, RuleOperator.NOT_CONTAINS): lambda actual, target: target.lower() not in actual.lower(),
    (AttributeKind.TEXT, RuleOperator.STARTS_WITH): lambda actual, target: actual.lower().startswith(target.lower()),
    # Numbers and dates
    **_ordered_comparators(AttributeKind.NUMBER),
    **_ordered_comparators(AttributeKind.DATE),
}


def valid_operators(rule_type: RuleType) -> Tuple[RuleOperator, ...]:
    """Operators accepted for a rule type, in enum declaration order."""
    kind = RULE_TYPE_KINDS[rule_type]
    return tuple(o for o in RuleOperator if (kind, o) in COMPARATORS)
