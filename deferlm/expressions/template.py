"""
Formula templates.

A template is a formula containing ``Placeholder`` nodes. Filling it is a
structural substitution over the tree, never string concatenation, so
captured expressions keep their shape and labels.
"""

from typing import Any, Dict, FrozenSet, Mapping, Union

from ..core.exceptions import ExpressionError
from ..utils.logging import get_logger
from ..utils.validation import validate_degree
from .capture import capture
from .nodes import Call, Expr, Formula, Literal, Placeholder, as_expr


logger = get_logger(__name__)


class FormulaTemplate:
    """
    A reusable formula with named holes.

    Examples:
        template = FormulaTemplate.parse("{response} ~ poly({predictor}, {degree}, raw = TRUE)")
        template.fill(response=col.dist, predictor=col.speed, degree=2)
        # dist ~ poly(speed, 2, raw = TRUE)
    """

    def __init__(self, template: Formula):
        if not isinstance(template, Formula):
            raise ExpressionError(expression=template, reason="templates must be formulas")
        self.template = template

    @classmethod
    def parse(cls, source: str) -> "FormulaTemplate":
        """Build a template from formula source with ``{name}`` placeholders."""
        from .parser import parse_formula

        return cls(parse_formula(source))

    @property
    def placeholders(self) -> FrozenSet[str]:
        return frozenset(self.template.get_placeholders())

    def fill(self, **bindings: Any) -> Formula:
        """
        Substitute every placeholder.

        Values that are expressions (or expression source strings) are
        captured; plain numbers and booleans become literals.

        Raises:
            ExpressionError: If a placeholder is left unbound or an unknown
                name is supplied
        """
        unknown = set(bindings) - self.placeholders
        if unknown:
            raise ExpressionError(
                expression=self.template.to_string(),
                reason=f"template has no placeholder(s) {sorted(unknown)}",
                suggestions=[f"Placeholders: {sorted(self.placeholders)}"],
            )

        nodes: Dict[str, Expr] = {}
        for name, value in bindings.items():
            if isinstance(value, (bool, int, float)):
                nodes[name] = as_expr(value)
            else:
                nodes[name] = capture(value, name)

        return substitute_template(self.template, nodes)

    def __repr__(self) -> str:
        return f"FormulaTemplate({self.template.to_string()!r})"


def substitute_template(template: Formula, bindings: Mapping[str, Expr]) -> Formula:
    """
    Structurally substitute ``bindings`` into ``template``.

    Raises:
        ExpressionError: If any placeholder remains unbound
    """
    result = template.substitute(bindings)
    unbound = result.get_placeholders()
    if unbound:
        raise ExpressionError(
            expression=result.to_string(),
            reason=f"unbound placeholder(s): {sorted(unbound)}",
            suggestions=["Supply a value for every placeholder"],
        )
    logger.debug(f"Substituted template {template.to_string()} -> {result.to_string()}")
    return result


# response ~ poly(predictor, degree, raw = raw)
POLY_TEMPLATE = Formula(
    Placeholder("response"),
    Call(
        "poly",
        (Placeholder("predictor"), Placeholder("degree")),
        (("raw", Placeholder("raw")),),
    ),
)


def poly_formula(
    response: Union[Expr, str],
    predictor: Union[Expr, str],
    degree: int = 1,
    raw: bool = True,
) -> Formula:
    """
    Fill the polynomial template.

    Args:
        response: Deferred response expression
        predictor: Deferred predictor expression
        degree: Polynomial degree (>= 1)
        raw: Raw powers (True) or orthogonal polynomials (False)

    Returns:
        ``response ~ poly(predictor, degree, raw = raw)``
    """
    bindings = {
        "response": capture(response, "response"),
        "predictor": capture(predictor, "predictor"),
        "degree": Literal(validate_degree(degree)),
        "raw": Literal(bool(raw)),
    }
    return substitute_template(POLY_TEMPLATE, bindings)
