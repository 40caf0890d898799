"""
Expression and formula parser for deferlm.

Reads R-style source text into expression trees using Python's own ``ast``
module, so nothing is ever executed:

- ``^`` is power (``x^2``), as is ``**``
- ``TRUE``/``FALSE`` are boolean literals; ``T`` and ``F`` are ordinary names
- backticks quote non-identifier column names (`` `body mass` ``)
- ``{name}`` is a template placeholder
- ``~`` separates response and predictors in a formula
"""

import ast
import io
import re
import tokenize
from typing import Dict, Optional, Union

from ..core.exceptions import ExpressionError, ModelSpecificationError
from ..utils.logging import get_logger
from .nodes import BinaryOp, Call, Expr, Formula, Literal, Placeholder, Symbol, UnaryOp


logger = get_logger(__name__)

_BACKTICK = re.compile(r"`([^`]*)`")

_BOOLEAN_NAMES = {"TRUE": True, "FALSE": False}

_BINARY = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mult: "*",
    ast.Div: "/",
    ast.Pow: "^",
}

_UNARY = {
    ast.USub: "-",
    ast.UAdd: "+",
}


class ExpressionParser:
    """
    Parser for R-style expressions and model formulas.

    Supports:
    - Column references: speed, `body mass`
    - Arithmetic: dist / speed, speed^2, -x
    - Function calls: log(dist), poly(speed, 2, raw = TRUE)
    - Placeholders: {response} ~ poly({predictor}, {degree})
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def parse_expression(self, source: str) -> Expr:
        """
        Parse a single expression.

        Args:
            source: Expression source text

        Returns:
            Expression tree

        Examples:
            "speed" -> Symbol("speed")
            "log(dist)" -> Call("log", (Symbol("dist"),))
        """
        if not isinstance(source, str) or not source.strip():
            raise ExpressionError(expression=source, reason="expression source must be a non-empty string")

        if "~" in source:
            raise ExpressionError(
                expression=source,
                reason="'~' is only allowed in formulas",
                suggestions=["Use parse_formula() for 'response ~ predictors'"],
            )

        text, quoted = self._replace_backticks(source.strip())
        text = self._translate_power(text, source)

        try:
            tree = ast.parse(text, mode="eval")
        except SyntaxError as e:
            raise ExpressionError(
                expression=source,
                reason=f"syntax error: {e.msg}",
                suggestions=[
                    "Check parentheses and operators",
                    "Quote names with spaces using backticks: `body mass`",
                ],
            ) from None

        expr = self._convert(tree.body, source, quoted)
        self.logger.debug(f"Parsed expression: {source!r} -> {expr.to_string()}")
        return expr

    def parse_formula(self, source: str) -> Formula:
        """
        Parse a formula string into a Formula node.

        Examples:
            "dist ~ speed" -> Formula(Symbol("dist"), Symbol("speed"))
            "~ x + z" -> Formula(None, BinaryOp("+", ...))
        """
        if not isinstance(source, str) or not source.strip():
            raise ModelSpecificationError(
                formula=str(source),
                specific_issue="formula source must be a non-empty string",
                suggestions=[
                    "Provide a formula such as 'dist ~ speed'",
                    "Use '~1' for intercept-only models",
                ],
            )

        original = source.strip()
        if original.count("~") != 1:
            raise ModelSpecificationError(
                formula=original,
                specific_issue="formula must contain exactly one '~'",
                suggestions=[
                    "Formula should have format 'response ~ predictors'",
                    "Or '~ predictors' for a one-sided formula",
                ],
            )

        response_part, predictor_part = (part.strip() for part in original.split("~", 1))
        if not predictor_part:
            raise ModelSpecificationError(
                formula=original,
                specific_issue="formula has no right-hand side",
                suggestions=["Use '~ 1' for an intercept-only model"],
            )

        lhs = self.parse_expression(response_part) if response_part else None
        rhs = self.parse_expression(predictor_part)

        result = Formula(lhs, rhs)
        self.logger.debug(f"Parsed formula: {original!r} -> {result.to_string()}")
        return result

    def _replace_backticks(self, text: str):
        """Swap `quoted names` for identifiers the Python tokenizer accepts."""
        quoted: Dict[str, str] = {}

        def swap(match):
            key = f"__bq{len(quoted)}__"
            quoted[key] = match.group(1)
            return key

        return _BACKTICK.sub(swap, text), quoted

    def _translate_power(self, text: str, source: str) -> str:
        """Rewrite R's ``^`` as ``**`` outside of string literals."""
        if "^" not in text:
            return text
        try:
            tokens = list(tokenize.generate_tokens(io.StringIO(text).readline))
        except (tokenize.TokenError, IndentationError, SyntaxError) as e:
            raise ExpressionError(expression=source, reason=f"cannot tokenize: {e}") from None

        rewritten = [
            (tok.type, "**") if tok.type == tokenize.OP and tok.string == "^" else (tok.type, tok.string)
            for tok in tokens
        ]
        return tokenize.untokenize(rewritten).strip()

    def _convert(self, node: ast.AST, source: str, quoted: Dict[str, str]) -> Expr:
        """Convert a Python AST node into an expression node."""
        if isinstance(node, ast.Name):
            if node.id in quoted:
                return Symbol(quoted[node.id])
            if node.id in _BOOLEAN_NAMES:
                return Literal(_BOOLEAN_NAMES[node.id])
            return Symbol(node.id)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, (bool, int, float, str)):
                return Literal(node.value)
            raise ExpressionError(
                expression=source,
                reason=f"unsupported constant {node.value!r}",
            )

        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
            operand = self._convert(node.operand, source, quoted)
            # Fold negative numbers into literals
            if isinstance(operand, Literal) and isinstance(operand.value, (int, float)) \
                    and not isinstance(operand.value, bool):
                return Literal(-operand.value if isinstance(node.op, ast.USub) else operand.value)
            return UnaryOp(_UNARY[type(node.op)], operand)

        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
            return BinaryOp(
                _BINARY[type(node.op)],
                self._convert(node.left, source, quoted),
                self._convert(node.right, source, quoted),
            )

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise ExpressionError(
                    expression=source,
                    reason="only plain function names can be called (e.g. log(x), not np.log(x))",
                )
            if any(isinstance(arg, ast.Starred) for arg in node.args) or any(k.arg is None for k in node.keywords):
                raise ExpressionError(expression=source, reason="argument unpacking is not supported")
            return Call(
                node.func.id,
                tuple(self._convert(arg, source, quoted) for arg in node.args),
                tuple((k.arg, self._convert(k.value, source, quoted)) for k in node.keywords),
            )

        if isinstance(node, ast.Set) and len(node.elts) == 1 and isinstance(node.elts[0], ast.Name):
            return Placeholder(node.elts[0].id)

        raise ExpressionError(
            expression=source,
            reason=f"unsupported syntax: {type(node).__name__}",
            suggestions=[
                "Supported: names, numbers, + - * / ^, function calls, {placeholders}",
                "Comparisons, indexing and attribute access are not supported",
            ],
        )


_parser: Optional[ExpressionParser] = None


def _get_parser() -> ExpressionParser:
    global _parser
    if _parser is None:
        _parser = ExpressionParser()
    return _parser


def parse_expression(source: str) -> Expr:
    """Parse a single expression string."""
    return _get_parser().parse_expression(source)


def parse_formula(source: Union[str, Formula]) -> Formula:
    """Parse a formula string; Formula objects pass through unchanged."""
    if isinstance(source, Formula):
        return source
    return _get_parser().parse_formula(source)
