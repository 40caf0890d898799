"""
Tests for expression capture and formula templates.
"""

import numpy as np
import pandas as pd
import pytest

from deferlm.core.exceptions import ExpressionError, ModelSpecificationError
from deferlm.expressions.capture import capture, col, is_deferred, quote
from deferlm.expressions.nodes import Call, Formula, Literal, Placeholder, Symbol
from deferlm.expressions.template import (
    POLY_TEMPLATE,
    FormulaTemplate,
    poly_formula,
    substitute_template,
)


pytestmark = pytest.mark.unit


class TestColumnNamespace:
    """col.<name> and col[<name>]."""

    def test_attribute_and_item_access(self):
        assert col.speed == Symbol("speed")
        assert col["body mass"] == Symbol("body mass")

    def test_arithmetic_is_deferred(self):
        expr = col.dist / col.speed
        assert expr.get_variable_names() == {"dist", "speed"}

    def test_dunder_lookup_is_not_a_column(self):
        with pytest.raises(AttributeError):
            col.__wrapped__


class TestCapture:
    """capture() accepts deferred references and rejects evaluated values."""

    def test_expr_passes_through(self):
        expr = col.speed
        assert capture(expr) is expr

    def test_source_is_quoted(self):
        assert capture("log(dist)") == Call("log", (Symbol("dist"),))
        assert quote("log(dist)") == capture("log(dist)")

    @pytest.mark.parametrize(
        "value",
        [
            pd.Series([1.0, 2.0], name="speed"),
            np.array([1.0, 2.0]),
            [1, 2],
            3.5,
            None,
        ],
    )
    def test_evaluated_values_rejected(self, value):
        with pytest.raises(ExpressionError) as exc_info:
            capture(value, "predictor")

        assert exc_info.value.error_code == "EXPRESSION"
        assert exc_info.value.context["argument"] == "predictor"

    def test_formula_rejected(self):
        with pytest.raises(ExpressionError):
            capture(Formula(Symbol("y"), Symbol("x")), "response")

    def test_empty_source_rejected(self):
        with pytest.raises(ExpressionError):
            capture("  ")

    def test_is_deferred(self):
        assert is_deferred(col.x)
        assert is_deferred("x")
        assert not is_deferred(pd.Series([1.0]))
        assert not is_deferred(Formula(Symbol("y"), Symbol("x")))


class TestPolyTemplate:
    """Filling response ~ poly(predictor, degree, raw = TRUE)."""

    def test_template_shape(self):
        assert POLY_TEMPLATE.get_placeholders() == {"response", "predictor", "degree", "raw"}
        assert POLY_TEMPLATE.to_string() == "{response} ~ poly({predictor}, {degree}, raw = {raw})"

    def test_poly_formula(self):
        f = poly_formula(col.dist, col.speed, degree=2)

        assert f.to_string() == "dist ~ poly(speed, 2, raw = TRUE)"
        assert f.rhs == Call("poly", (Symbol("speed"), Literal(2)), (("raw", Literal(True)),))

    def test_compound_expressions_keep_structure(self):
        f = poly_formula("log(dist)", col.speed / 10, degree=3, raw=False)
        assert f.to_string() == "log(dist) ~ poly(speed / 10, 3, raw = FALSE)"

    def test_invalid_degree(self):
        with pytest.raises(ModelSpecificationError):
            poly_formula(col.dist, col.speed, degree=0)
        with pytest.raises(ModelSpecificationError):
            poly_formula(col.dist, col.speed, degree=True)
        with pytest.raises(ModelSpecificationError):
            poly_formula(col.dist, col.speed, degree=1.5)

    def test_evaluated_predictor_rejected(self, cars):
        with pytest.raises(ExpressionError):
            poly_formula(col.dist, cars["speed"])


class TestFormulaTemplate:
    """User-defined templates."""

    def test_parse_and_fill(self):
        template = FormulaTemplate.parse("{y} ~ {x} + log({z})")
        filled = template.fill(y=col.dist, x="speed", z=col.weight)

        assert template.placeholders == frozenset({"x", "y", "z"})
        assert filled.to_string() == "dist ~ speed + log(weight)"

    def test_numbers_become_literals(self):
        template = FormulaTemplate.parse("y ~ poly(x, {d})")
        assert template.fill(d=4).to_string() == "y ~ poly(x, 4)"

    def test_unknown_binding(self):
        template = FormulaTemplate.parse("{y} ~ x")
        with pytest.raises(ExpressionError):
            template.fill(y=col.a, q=col.b)

    def test_unbound_placeholder(self):
        template = FormulaTemplate.parse("{y} ~ {x}")
        with pytest.raises(ExpressionError):
            template.fill(y=col.a)

    def test_substitute_template_reports_unbound(self):
        with pytest.raises(ExpressionError):
            substitute_template(POLY_TEMPLATE, {"response": Symbol("y")})

    def test_non_formula_template(self):
        with pytest.raises(ExpressionError):
            FormulaTemplate(Placeholder("x"))
