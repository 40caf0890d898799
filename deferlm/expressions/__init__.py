"""
Deferred expressions for deferlm.

Expressions are captured as immutable trees, substituted into formula
templates and only resolved once a table is supplied.
"""

from .nodes import (
    NodeType,
    Expr,
    Symbol,
    Literal,
    Placeholder,
    UnaryOp,
    BinaryOp,
    Call,
    Formula,
    as_expr,
    formula,
)
from .capture import col, quote, capture, is_deferred, ColumnNamespace
from .parser import ExpressionParser, parse_expression, parse_formula
from .functions import PolyCoefs, poly, get_function, register_function, list_functions
from .template import FormulaTemplate, substitute_template, poly_formula, POLY_TEMPLATE
from .design_matrix import (
    DesignMatrixBuilder,
    DesignMatrixInfo,
    ModelTerm,
    build_design_matrix,
    expand_terms,
    INTERCEPT_NAME,
)

__all__ = [
    # Nodes
    "NodeType",
    "Expr",
    "Symbol",
    "Literal",
    "Placeholder",
    "UnaryOp",
    "BinaryOp",
    "Call",
    "Formula",
    "as_expr",
    "formula",
    # Capture
    "col",
    "quote",
    "capture",
    "is_deferred",
    "ColumnNamespace",
    # Parsing
    "ExpressionParser",
    "parse_expression",
    "parse_formula",
    # Functions
    "PolyCoefs",
    "poly",
    "get_function",
    "register_function",
    "list_functions",
    # Templates
    "FormulaTemplate",
    "substitute_template",
    "poly_formula",
    "POLY_TEMPLATE",
    # Design matrices
    "DesignMatrixBuilder",
    "DesignMatrixInfo",
    "ModelTerm",
    "build_design_matrix",
    "expand_terms",
    "INTERCEPT_NAME",
]
