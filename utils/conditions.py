"""
Shared condition evaluator — used by Condition logic steps and webhook
response mapping.

Evaluates Comparison objects against the conversation variables.
Supports nested dot-notation field access and numeric coercion.
"""
from __future__ import annotations

import operator as op
from typing import Any, Optional

from models.schemas import (
    Comparison, ComparisonOperator, ConditionOptions, LogicalOperator, Variable,
)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def _compare_numbers(fn):
    def compare(a: Any, b: Any) -> bool:
        left, right = _to_number(a), _to_number(b)
        if left is None or right is None:
            return False
        return fn(left, right)
    return compare


def _equal(a: Any, b: Any) -> bool:
    left, right = _to_number(a), _to_number(b)
    if left is not None and right is not None:
        return left == right
    return str(a) == str(b)


OPERATORS: dict[ComparisonOperator, Any] = {
    ComparisonOperator.EQUAL: _equal,
    ComparisonOperator.NOT_EQUAL: lambda a, b: not _equal(a, b),
    ComparisonOperator.CONTAINS: lambda a, b: str(b) in str(a),
    ComparisonOperator.GREATER: _compare_numbers(op.gt),
    ComparisonOperator.LESS: _compare_numbers(op.lt),
    ComparisonOperator.IS_SET: lambda a, b: a is not None and a != "",
}


def get_nested_value(data: Any, field: str) -> Any:
    """Get a value from nested dicts/lists using dot notation. e.g. 'data.0.name'"""
    current = data
    for part in field.split("."):
        if not part:
            continue
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def evaluate_comparison(comparison: Comparison, variables: list[Variable]) -> bool:
    """Evaluate a single comparison against the variable values."""
    if not comparison.variable_id or not comparison.comparison_operator:
        return False
    variable = next((v for v in variables if v.id == comparison.variable_id), None)
    value = variable.value if variable else None
    fn = OPERATORS.get(comparison.comparison_operator)
    if fn is None:
        return False
    if value is None and comparison.comparison_operator != ComparisonOperator.IS_SET:
        return False
    try:
        return fn(value, comparison.value if comparison.value is not None else "")
    except (TypeError, ValueError):
        return False


def evaluate_conditions(options: ConditionOptions, variables: list[Variable]) -> bool:
    """Evaluate all comparisons joined by the logical operator."""
    if not options.comparisons:
        return False
    results = (evaluate_comparison(c, variables) for c in options.comparisons)
    if options.logical_operator == LogicalOperator.OR:
        return any(results)
    return all(results)
