"""Unit tests for the calculated-expression evaluator."""

import pytest

from reportforge.interfaces.errors import ExpressionError
from reportforge.strategies.template_engine.expressions import (
    ExpressionEvaluator,
    as_number,
    evaluate_or_blank,
)


class TestExpressionEvaluator:
    """Test suite for ExpressionEvaluator."""

    @pytest.fixture
    def evaluator(self):
        return ExpressionEvaluator()

    # =========================================================================
    # Accepted Grammar
    # =========================================================================

    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("1 + 2 * 3", 7),
            ("(1 + 2) * 3", 9),
            ("7 // 2", 3),
            ("7 % 4", 3),
            ("2 ** 10", 1024),
            ("-width + 1", -1.5),
            ("width / 2", 1.25),
        ],
    )
    def test_arithmetic(self, evaluator, expression, expected):
        assert evaluator.evaluate(expression, {"width": "2.5"}) == expected

    def test_numeric_strings_add_as_numbers(self, evaluator):
        assert evaluator.evaluate("a + b", {"a": "2", "b": "3"}) == 5

    def test_plus_concatenates_text(self, evaluator):
        names = {"city": "Austin", "state": "TX"}
        assert evaluator.evaluate("city + ', ' + state", names) == "Austin, TX"

    def test_concatenation_with_number(self, evaluator):
        assert evaluator.evaluate("'Lot ' + n", {"n": 12}) == "Lot 12"

    # =========================================================================
    # Rejected Constructs
    # =========================================================================

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os').system('true')",
            "width.real",
            "values[0]",
            "[x for x in range(3)]",
            "lambda: 1",
            "open('/etc/passwd')",
            "True",
        ],
    )
    def test_unsupported_constructs(self, evaluator, expression):
        with pytest.raises(ExpressionError):
            evaluator.evaluate(expression, {"width": 1, "values": [1]})

    def test_unknown_name(self, evaluator):
        with pytest.raises(ExpressionError) as exc_info:
            evaluator.evaluate("missing * 2", {})
        assert exc_info.value.detail == "missing"

    def test_division_by_zero(self, evaluator):
        with pytest.raises(ExpressionError):
            evaluator.evaluate("1 / 0", {})

    def test_huge_exponent_rejected(self, evaluator):
        with pytest.raises(ExpressionError):
            evaluator.evaluate("9 ** 999999", {})

    @pytest.mark.parametrize("expression", ["(10 ** 99) ** 50", "(2 ** 100) ** 40", "n * n"])
    def test_oversized_integers_rejected(self, evaluator, expression):
        with pytest.raises(ExpressionError):
            evaluator.evaluate(expression, {"n": 10**600})

    def test_too_long(self):
        with pytest.raises(ExpressionError):
            ExpressionEvaluator(max_length=5).evaluate("1 + 2 + 3", {})

    def test_arithmetic_on_text(self, evaluator):
        with pytest.raises(ExpressionError):
            evaluator.evaluate("name * 2", {"name": "Acme"})


class TestHelpers:
    """Test suite for module helpers."""

    @pytest.mark.parametrize(
        "value, expected",
        [("3", 3), (" 2.5 ", 2.5), (4, 4), ("", None), ("abc", None), (True, None), (None, None), ("inf", None)],
    )
    def test_as_number(self, value, expected):
        assert as_number(value) == expected

    def test_evaluate_or_blank_swallows_failures(self):
        assert evaluate_or_blank("nope(", {}) == ""
        assert evaluate_or_blank(None, {}) == ""
        assert evaluate_or_blank("a * 2", {"a": 4}) == 8
        assert evaluate_or_blank("(10 ** 99) ** 50", {}) == ""
