"""
Tests for expression tree nodes.
"""

import numpy as np
import pandas as pd
import pytest

from deferlm.core.exceptions import ColumnNotFoundError, ExpressionError
from deferlm.expressions.nodes import (
    BinaryOp,
    Call,
    Formula,
    Literal,
    NodeType,
    Placeholder,
    Symbol,
    UnaryOp,
    as_expr,
    formula,
)


pytestmark = pytest.mark.unit


class TestConstruction:
    """Building trees with constructors and operators."""

    def test_operators_build_trees(self):
        expr = Symbol("dist") / Symbol("speed") + 1

        assert expr == BinaryOp("+", BinaryOp("/", Symbol("dist"), Symbol("speed")), Literal(1))
        assert expr.node_type == NodeType.BINARY

    def test_reflected_operators(self):
        assert 2 * Symbol("x") == BinaryOp("*", Literal(2), Symbol("x"))
        assert 1 - Symbol("x") == BinaryOp("-", Literal(1), Symbol("x"))
        assert -Symbol("x") == UnaryOp("-", Symbol("x"))

    def test_structural_equality_and_hashing(self):
        a = Call("log", (Symbol("dist"),))
        b = Call("log", [Symbol("dist")])

        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_call_normalizes_kwargs(self):
        call = Call("poly", (Symbol("x"), 2), {"raw": True})

        assert call.args == (Symbol("x"), Literal(2))
        assert call.keyword("raw") == Literal(True)
        assert call.keyword("missing") is None

    def test_as_expr_rejects_arrays(self):
        with pytest.raises(ExpressionError):
            as_expr(np.arange(3))

    def test_as_expr_unwraps_numpy_scalars(self):
        assert as_expr(np.int64(3)) == Literal(3)

    def test_invalid_symbol_name(self):
        with pytest.raises(ExpressionError):
            Symbol("")

    def test_invalid_function_name(self):
        with pytest.raises(ExpressionError):
            Call("np.log", (Symbol("x"),))

    def test_formula_rejects_nesting(self):
        inner = Formula(Symbol("y"), Symbol("x"))
        with pytest.raises(ExpressionError):
            Formula(Symbol("z"), inner)

    def test_formula_rejects_plain_strings(self):
        with pytest.raises(ExpressionError):
            Formula("y", Symbol("x"))

    def test_formula_helper_captures_source(self):
        f = formula("log(dist)", "speed")

        assert f == Formula(Call("log", (Symbol("dist"),)), Symbol("speed"))
        assert f.has_response


class TestRendering:
    """to_string() output."""

    @pytest.mark.parametrize(
        "expr, expected",
        [
            (Symbol("speed"), "speed"),
            (Symbol("body mass"), "`body mass`"),
            (Literal(True), "TRUE"),
            (Literal(2.5), "2.5"),
            (Literal("a"), '"a"'),
            (Symbol("x") ** 2, "x^2"),
            ((Symbol("a") + Symbol("b")) * Symbol("c"), "(a + b) * c"),
            (Symbol("a") - (Symbol("b") - Symbol("c")), "a - (b - c)"),
            (-(Symbol("a") + Symbol("b")), "-(a + b)"),
            (Call("poly", (Symbol("speed"), 2), {"raw": True}), "poly(speed, 2, raw = TRUE)"),
            (Placeholder("degree"), "{degree}"),
        ],
    )
    def test_to_string(self, expr, expected):
        assert expr.to_string() == expected
        assert str(expr) == expected

    def test_formula_rendering(self):
        assert Formula(Symbol("y"), Symbol("x")).to_string() == "y ~ x"
        assert Formula(None, Literal(1)).to_string() == "~1"


class TestInspection:
    """Variable and placeholder discovery, substitution."""

    def test_variable_names(self):
        expr = Call("log", (Symbol("dist") / Symbol("speed"),))
        assert expr.get_variable_names() == {"dist", "speed"}

    def test_formula_variable_names(self):
        f = Formula(Symbol("y"), Call("poly", (Symbol("x"), 2)))
        assert f.get_variable_names() == {"x", "y"}

    def test_substitute_fills_placeholders(self):
        template = Formula(Placeholder("response"), Call("poly", (Placeholder("predictor"), 3)))
        filled = template.substitute({"response": Symbol("dist"), "predictor": Symbol("speed")})

        assert filled.to_string() == "dist ~ poly(speed, 3)"
        assert filled.get_placeholders() == set()
        # The template itself is untouched
        assert template.get_placeholders() == {"response", "predictor"}

    def test_substitute_leaves_unbound(self):
        expr = Placeholder("a") + Placeholder("b")
        partial = expr.substitute({"a": Symbol("x")})
        assert partial.get_placeholders() == {"b"}


class TestEvaluation:
    """Late-binding evaluation against a table."""

    def test_symbol_resolves_column(self):
        frame = pd.DataFrame({"x": [1.0, 2.0]})
        pd.testing.assert_series_equal(Symbol("x").evaluate(frame), frame["x"])

    def test_missing_column(self):
        frame = pd.DataFrame({"x": [1.0]})
        with pytest.raises(ColumnNotFoundError) as exc_info:
            Symbol("y").evaluate(frame)

        assert isinstance(exc_info.value, KeyError)
        assert exc_info.value.missing_columns == ["y"]

    def test_arithmetic(self):
        frame = pd.DataFrame({"a": [2.0, 4.0], "b": [1.0, 2.0]})
        result = ((Symbol("a") / Symbol("b")) ** 2).evaluate(frame)
        np.testing.assert_allclose(result, [4.0, 4.0])

    def test_call_evaluates_through_registry(self):
        frame = pd.DataFrame({"x": [1.0, np.e]})
        np.testing.assert_allclose(Call("log", (Symbol("x"),)).evaluate(frame), [0.0, 1.0])

    def test_unfilled_placeholder_raises(self):
        with pytest.raises(ExpressionError):
            Placeholder("x").evaluate(pd.DataFrame({"x": [1]}))

    def test_same_tree_different_tables(self):
        expr = Symbol("x") * 2
        first = expr.evaluate(pd.DataFrame({"x": [1.0]}))
        second = expr.evaluate(pd.DataFrame({"x": [5.0]}))
        assert first.tolist() == [2.0]
        assert second.tolist() == [10.0]
