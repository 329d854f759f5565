"""Sandboxed evaluator for calculated variables.

Expressions are parsed with ``ast`` and walked by hand; only arithmetic,
string concatenation, literals and references to bound names are
accepted. Nothing is ever passed to ``eval``.
"""

import ast
import logging
import math
import operator
from collections.abc import Mapping
from typing import Any

from reportforge.interfaces.errors import ExpressionError

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = 1000
MAX_EXPONENT = 100
MAX_STRING_LENGTH = 100_000
# Integers stay well below the interpreter's int-to-str digit limit.
MAX_INTEGER_BITS = 3000

_ARITHMETIC = {
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def as_number(value: Any) -> int | float | None:
    """Numeric view of a value: numbers as-is, numeric strings parsed, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _bounded(number: Any) -> Any:
    if isinstance(number, int) and number.bit_length() > MAX_INTEGER_BITS:
        raise ExpressionError("Result too large", detail=f"{number.bit_length()} bits")
    return number


class ExpressionEvaluator:
    """Evaluates a restricted arithmetic grammar against named values.

    Example:
        ```python
        evaluator = ExpressionEvaluator()
        evaluator.evaluate("area * 2", {"area": "12.5"})  # 25.0
        evaluator.evaluate("city + ', ' + state", {"city": "Austin", "state": "TX"})
        ```
    """

    def __init__(self, max_length: int = MAX_EXPRESSION_LENGTH) -> None:
        self.max_length = max_length

    def evaluate(self, expression: str, names: Mapping[str, Any]) -> Any:
        """Evaluate ``expression`` with ``names`` bound.

        Raises:
            ExpressionError: If the expression is too long, malformed,
                uses a construct outside the grammar, references an
                unknown name, or fails arithmetically.
        """
        if not expression or not expression.strip():
            raise ExpressionError("Empty expression")
        if len(expression) > self.max_length:
            raise ExpressionError("Expression too long", detail=f"{len(expression)} characters")

        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as e:
            raise ExpressionError("Malformed expression", detail=str(e)) from e

        try:
            return self._eval(tree.body, names)
        except ExpressionError:
            raise
        except (ArithmeticError, TypeError, ValueError) as e:
            raise ExpressionError("Expression evaluation failed", detail=str(e)) from e

    def _eval(self, node: ast.AST, names: Mapping[str, Any]) -> Any:
        match node:
            case ast.Constant(value=value) if isinstance(value, (int, float, str)) and not isinstance(value, bool):
                return value
            case ast.Name(id=name):
                if name not in names:
                    raise ExpressionError("Unknown name", detail=name)
                return names[name]
            case ast.UnaryOp(op=op, operand=operand) if type(op) in _UNARY:
                number = as_number(self._eval(operand, names))
                if number is None:
                    raise ExpressionError("Unary operator on a non-number")
                return _bounded(_UNARY[type(op)](number))
            case ast.BinOp(left=left, op=ast.Add(), right=right):
                return self._add(self._eval(left, names), self._eval(right, names))
            case ast.BinOp(left=left, op=op, right=right) if type(op) in _ARITHMETIC:
                a = as_number(self._eval(left, names))
                b = as_number(self._eval(right, names))
                if a is None or b is None:
                    raise ExpressionError("Arithmetic on a non-number")
                if isinstance(op, ast.Pow):
                    if abs(b) > MAX_EXPONENT:
                        raise ExpressionError("Exponent too large", detail=str(b))
                    if isinstance(a, int) and a.bit_length() * abs(b) > MAX_INTEGER_BITS:
                        raise ExpressionError("Result too large", detail=f"{a} ** {b}")
                return _bounded(_ARITHMETIC[type(op)](_bounded(a), _bounded(b)))
            case _:
                raise ExpressionError("Unsupported construct", detail=type(node).__name__)

    @staticmethod
    def _add(left: Any, right: Any) -> Any:
        a, b = as_number(left), as_number(right)
        if a is not None and b is not None:
            return _bounded(a + b)
        text = _to_text(left) + _to_text(right)
        if len(text) > MAX_STRING_LENGTH:
            raise ExpressionError("Result too long")
        return text


def evaluate_or_blank(expression: str | None, names: Mapping[str, Any]) -> Any:
    """Evaluate a calculated variable; any failure yields an empty string."""
    if not expression:
        return ""
    try:
        return ExpressionEvaluator().evaluate(expression, names)
    except ExpressionError as e:
        logger.debug(f"Calculated expression {expression!r} failed: {e.message} ({e.detail})")
        return ""
