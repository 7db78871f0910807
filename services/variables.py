"""
Variable interpolation and expression evaluation.

Step content references variables by name with {{name}} placeholders.
Set-variable steps may hold arithmetic ("{{Price}} * 2"); it is evaluated
over a whitelisted AST so visitor-provided values can never run code.
"""
from __future__ import annotations

import ast
import operator as op
import re
from typing import Any, Optional

from models.schemas import Variable

PLACEHOLDER = re.compile(r"\{\{([^{}]+)\}\}")

_BIN_OPS = {
    ast.Add: op.add,
    ast.Sub: op.sub,
    ast.Mult: op.mul,
    ast.Div: op.truediv,
    ast.FloorDiv: op.floordiv,
    ast.Mod: op.mod,
    ast.Pow: lambda base, exponent: _checked_pow(base, exponent),
}
_UNARY_OPS = {ast.UAdd: op.pos, ast.USub: op.neg}


def _checked_pow(base, exponent):
    if abs(exponent) > 64:
        raise ValueError("Exponent too large")
    return op.pow(base, exponent)


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def find_variable_by_name(variables: list[Variable], name: str) -> Optional[Variable]:
    name = name.strip()
    return next((v for v in variables if v.name == name), None)


def parse_variables(variables: list[Variable], text: Optional[str]) -> str:
    """Replace {{variable}} placeholders with current values ("" if unset)."""
    if not text:
        return ""

    def replacer(match):
        variable = find_variable_by_name(variables, match.group(1))
        return stringify(variable.value) if variable else ""

    return PLACEHOLDER.sub(replacer, text)


def _eval_node(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        return _BIN_OPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    raise ValueError(f"Unsupported expression node: {type(node).__name__}")


def evaluate_expression(variables: list[Variable], expression: Optional[str]) -> Any:
    """
    Substitute variables, then evaluate the result as arithmetic when it is
    one. Anything that is not plain arithmetic is returned as text.
    """
    parsed = parse_variables(variables, expression)
    if not parsed.strip():
        return parsed
    try:
        result = _eval_node(ast.parse(parsed.strip(), mode="eval"))
    except (SyntaxError, ValueError, TypeError, ZeroDivisionError, OverflowError):
        return parsed
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result
