"""Collection rule evaluation.

Key Components:
    - RuleEvaluator: evaluates a rule set (ALL / ANY) against item snapshots
    - validate_rule: save-time validation raising ValidationError
    - COMPARATORS / RULE_TYPE_KINDS: static dispatch tables
"""
from collection_engine.services.rules.comparators import (
    AttributeKind,
    COMPARATORS,
    RULE_TYPE_KINDS,
    valid_operators,
)
from collection_engine.services.rules.evaluator import (
    CompiledRule,
    RuleDefinition,
    RuleEvaluator,
    compile_rule,
    validate_rule,
)

__all__ = [
    "AttributeKind",
    "COMPARATORS",
    "RULE_TYPE_KINDS",
    "valid_operators",
    "CompiledRule",
    "RuleDefinition",
    "RuleEvaluator",
    "compile_rule",
    "validate_rule",
]
