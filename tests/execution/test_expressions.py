"""
Tests for the restricted arithmetic expression engine.
"""

import math

import pytest

from dynvars.core.document import DocumentStore
from dynvars.execution.expressions import (
    BinaryNode,
    ExpressionEngine,
    ExpressionParser,
    ExpressionSyntaxError,
    NumberNode,
    evaluate_node,
    render_number,
)


@pytest.fixture
def engine():
    store = DocumentStore(
        {
            "hp": 70,
            "max_hp": [100, "maximum"],
            "stats": {"str": 5, "dex": 2.5},
            "party": [{"level": 3}, {"level": 7}],
            "debt": -20,
            "label": "hero",
            "体力": 9,
        }
    )
    return ExpressionEngine(store)


class TestEvaluation:
    """Tests for end-to-end evaluation."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("1 + 2 * 3", 7),
            ("(1 + 2) * 3", 9),
            ("10 - 4 - 3", 3),
            ("7 / 2", 3.5),
            ("8 / 4", 2),
            ("7 % 3", 1),
            ("-7 % 3", -1),
            ("-(2 + 3)", -5),
            ("1.5 * 2", 3),
            (".5 + .25", 0.75),
        ],
    )
    def test_arithmetic(self, engine, expression, expected):
        assert engine.evaluate(expression) == expected

    def test_left_to_right(self, engine):
        assert engine.evaluate("100 / 10 / 5") == 2

    def test_names_resolve_to_numbers(self, engine):
        assert engine.evaluate("hp + 5") == 75
        assert engine.evaluate("max_hp - hp") == 30
        assert engine.evaluate("stats.str * stats.dex") == 12.5
        assert engine.evaluate("party[1].level - party.0.level") == 4

    def test_unicode_names(self, engine):
        assert engine.evaluate("体力 * 2") == 18

    def test_negative_values_substitute_safely(self, engine):
        """Test a negative stored value does not merge with a preceding operator."""
        assert engine.evaluate("10 - debt") == 30
        assert engine.evaluate("debt * -1") == 20

    def test_missing_and_non_numeric_names_are_zero(self, engine):
        assert engine.evaluate("nothing + 1") == 1
        assert engine.evaluate("label + 1") == 1

    def test_integral_results_are_ints(self, engine):
        result = engine.evaluate("2.5 * 2")
        assert result == 5
        assert isinstance(result, int)


class TestIEEEDivision:
    """Tests for IEEE double division semantics."""

    def test_division_by_zero_is_infinite(self, engine):
        assert engine.evaluate("1 / 0") == math.inf
        assert engine.evaluate("-1 / 0") == -math.inf

    def test_zero_over_zero_is_nan(self, engine):
        assert math.isnan(engine.evaluate("0 / 0"))

    def test_infinity_propagates(self, engine):
        assert engine.evaluate("1 / 0 + 5") == math.inf
        assert math.isnan(engine.evaluate("1 / 0 - 1 / 0"))

    def test_modulo_by_zero_is_nan(self, engine):
        assert math.isnan(engine.evaluate("5 % 0"))


class TestRejection:
    """Tests for fail-closed rejection."""

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os')",
            "hp; 1",
            "1 ** 2",
            "2 ^ 3",
            "hp == 70",
            "[1, 2]",
            "'a' + 1",
            "1 +",
            "(1 + 2",
            "1 2",
            "",
            "   ",
        ],
    )
    def test_rejected_expressions(self, engine, expression):
        assert engine.evaluate(expression) is None

    def test_non_string_is_rejected(self, engine):
        assert engine.evaluate(42) is None

    def test_length_limit(self, engine):
        engine.max_length = 10
        assert engine.evaluate("1 + 1 + 1 + 1 + 1") is None

    def test_depth_limit(self):
        engine = ExpressionEngine(DocumentStore(), max_depth=3)
        assert engine.evaluate("((((1))))") is None
        assert engine.evaluate("((1))") == 1


class TestParser:
    """Tests for the expression parser and tree walker."""

    def test_precedence_tree(self):
        tree = ExpressionParser("1 + 2 * 3").parse()
        assert tree == BinaryNode("+", NumberNode(1), BinaryNode("*", NumberNode(2), NumberNode(3)))
        assert evaluate_node(tree) == 7

    def test_long_operator_chain(self):
        """Test a chain far deeper than the interpreter's recursion limit."""
        engine = ExpressionEngine(DocumentStore(), max_length=100_000)
        assert engine.evaluate("+".join(["1"] * 5000)) == 5000
        assert engine.evaluate(" - ".join(["2"] * 5000)) == 2 - 2 * 4999

    def test_unary_signs_in_tree(self):
        tree = ExpressionParser("-(2 - 5) * +3").parse()
        assert evaluate_node(tree) == 9

    def test_syntax_error(self):
        with pytest.raises(ExpressionSyntaxError):
            ExpressionParser("1 + )").parse()

    def test_render_number(self):
        assert render_number(5) == "5"
        assert render_number(-5) == "(-5)"
        assert render_number(math.inf) == "(1/0)"
        assert render_number(math.nan) == "(0/0)"
