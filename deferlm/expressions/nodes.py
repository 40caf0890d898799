"""
Expression tree nodes for deferlm.

An expression is an immutable tree of tagged nodes. Nodes are captured
without touching any data, carried around as values, structurally
substituted into templates, and only evaluated once a table is supplied.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Set, Tuple

import numpy as np
import pandas as pd

from ..core.exceptions import ColumnNotFoundError, ExpressionError


class NodeType(str, Enum):
    """Tags for expression nodes."""

    SYMBOL = "symbol"
    LITERAL = "literal"
    PLACEHOLDER = "placeholder"
    UNARY = "unary"
    BINARY = "binary"
    CALL = "call"
    FORMULA = "formula"


# Operator precedence used when rendering; higher binds tighter.
_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2, "unary": 3, "^": 4}

_BINARY_OPS = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": lambda a, b: a / b,
    "^": lambda a, b: a ** b,
}

_UNARY_OPS = {
    "-": lambda a: -a,
    "+": lambda a: +a,
}

_LITERAL_TYPES = (bool, int, float, str, np.integer, np.floating, np.bool_)


def as_expr(value: Any) -> "Expr":
    """Wrap a plain scalar as a Literal; pass expressions through."""
    if isinstance(value, Expr):
        return value
    if isinstance(value, _LITERAL_TYPES):
        return Literal(value.item() if isinstance(value, np.generic) else value)
    raise ExpressionError(
        expression=value,
        reason=f"cannot embed a value of type {type(value).__name__} in an expression",
    )


@dataclass(frozen=True)
class Expr(ABC):
    """Abstract base class for expression nodes."""

    node_type = None

    @abstractmethod
    def get_variable_names(self) -> Set[str]:
        """Get all column names referenced by this expression."""

    @abstractmethod
    def get_placeholders(self) -> Set[str]:
        """Get the names of unfilled placeholders."""

    @abstractmethod
    def substitute(self, bindings: Mapping[str, "Expr"]) -> "Expr":
        """Return a copy with placeholders replaced from ``bindings``."""

    @abstractmethod
    def to_string(self) -> str:
        """Render the expression as source text."""

    @abstractmethod
    def evaluate(self, frame: pd.DataFrame) -> Any:
        """Resolve the expression against the columns of ``frame``."""

    def precedence(self) -> int:
        return 10

    def __str__(self) -> str:
        return self.to_string()

    # Arithmetic builds new trees instead of computing anything.
    def __add__(self, other):
        return BinaryOp("+", self, as_expr(other))

    def __radd__(self, other):
        return BinaryOp("+", as_expr(other), self)

    def __sub__(self, other):
        return BinaryOp("-", self, as_expr(other))

    def __rsub__(self, other):
        return BinaryOp("-", as_expr(other), self)

    def __mul__(self, other):
        return BinaryOp("*", self, as_expr(other))

    def __rmul__(self, other):
        return BinaryOp("*", as_expr(other), self)

    def __truediv__(self, other):
        return BinaryOp("/", self, as_expr(other))

    def __rtruediv__(self, other):
        return BinaryOp("/", as_expr(other), self)

    def __pow__(self, other):
        return BinaryOp("^", self, as_expr(other))

    def __rpow__(self, other):
        return BinaryOp("^", as_expr(other), self)

    def __neg__(self):
        return UnaryOp("-", self)

    def __pos__(self):
        return UnaryOp("+", self)


@dataclass(frozen=True, eq=True)
class Symbol(Expr):
    """Reference to a table column by name."""

    name: str
    node_type = NodeType.SYMBOL

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ExpressionError(
                expression=self.name,
                reason="column names must be non-empty strings",
            )

    def get_variable_names(self) -> Set[str]:
        return {self.name}

    def get_placeholders(self) -> Set[str]:
        return set()

    def substitute(self, bindings: Mapping[str, Expr]) -> Expr:
        return self

    def to_string(self) -> str:
        if self.name.isidentifier():
            return self.name
        return f"`{self.name}`"

    def evaluate(self, frame: pd.DataFrame) -> Any:
        if self.name not in frame.columns:
            raise ColumnNotFoundError([self.name], available_columns=list(frame.columns))
        return frame[self.name]


@dataclass(frozen=True, eq=True)
class Literal(Expr):
    """A constant scalar (number, boolean or string)."""

    value: Any
    node_type = NodeType.LITERAL

    def __post_init__(self):
        if not isinstance(self.value, (bool, int, float, str)):
            raise ExpressionError(
                expression=self.value,
                reason=f"literals must be numbers, booleans or strings, not {type(self.value).__name__}",
            )

    def get_variable_names(self) -> Set[str]:
        return set()

    def get_placeholders(self) -> Set[str]:
        return set()

    def substitute(self, bindings: Mapping[str, Expr]) -> Expr:
        return self

    def to_string(self) -> str:
        if isinstance(self.value, bool):
            return "TRUE" if self.value else "FALSE"
        if isinstance(self.value, str):
            escaped = self.value.replace("\\", "\\\\").replace('"', '\\"')
            return f'"{escaped}"'
        return repr(self.value)

    def evaluate(self, frame: pd.DataFrame) -> Any:
        return self.value


@dataclass(frozen=True, eq=True)
class Placeholder(Expr):
    """A named hole in a template, filled by ``substitute``."""

    name: str
    node_type = NodeType.PLACEHOLDER

    def get_variable_names(self) -> Set[str]:
        return set()

    def get_placeholders(self) -> Set[str]:
        return {self.name}

    def substitute(self, bindings: Mapping[str, Expr]) -> Expr:
        if self.name in bindings:
            return as_expr(bindings[self.name])
        return self

    def to_string(self) -> str:
        return "{" + self.name + "}"

    def evaluate(self, frame: pd.DataFrame) -> Any:
        raise ExpressionError(
            expression=self.to_string(),
            reason=f"placeholder '{self.name}' was never filled",
            suggestions=["Substitute every placeholder before evaluating the template"],
        )


@dataclass(frozen=True, eq=True)
class UnaryOp(Expr):
    """Unary arithmetic (negation)."""

    op: str
    operand: Expr
    node_type = NodeType.UNARY

    def __post_init__(self):
        if self.op not in _UNARY_OPS:
            raise ExpressionError(expression=self.op, reason="unsupported unary operator")

    def precedence(self) -> int:
        return _PRECEDENCE["unary"]

    def get_variable_names(self) -> Set[str]:
        return self.operand.get_variable_names()

    def get_placeholders(self) -> Set[str]:
        return self.operand.get_placeholders()

    def substitute(self, bindings: Mapping[str, Expr]) -> Expr:
        return UnaryOp(self.op, self.operand.substitute(bindings))

    def to_string(self) -> str:
        inner = self.operand.to_string()
        if self.operand.precedence() < self.precedence():
            inner = f"({inner})"
        return f"{self.op}{inner}"

    def evaluate(self, frame: pd.DataFrame) -> Any:
        return _UNARY_OPS[self.op](self.operand.evaluate(frame))


@dataclass(frozen=True, eq=True)
class BinaryOp(Expr):
    """
    Binary arithmetic node.

    Inside a function call or on the left-hand side of a formula the operator
    is plain arithmetic. At the top level of a formula's right-hand side the
    design matrix builder reads ``+``, ``-`` and ``*`` as term operators.
    """

    op: str
    left: Expr
    right: Expr
    node_type = NodeType.BINARY

    def __post_init__(self):
        if self.op not in _BINARY_OPS:
            raise ExpressionError(expression=self.op, reason="unsupported binary operator")

    def precedence(self) -> int:
        return _PRECEDENCE[self.op]

    def get_variable_names(self) -> Set[str]:
        return self.left.get_variable_names() | self.right.get_variable_names()

    def get_placeholders(self) -> Set[str]:
        return self.left.get_placeholders() | self.right.get_placeholders()

    def substitute(self, bindings: Mapping[str, Expr]) -> Expr:
        return BinaryOp(self.op, self.left.substitute(bindings), self.right.substitute(bindings))

    def to_string(self) -> str:
        mine = self.precedence()
        left = self.left.to_string()
        right = self.right.to_string()

        # ^ is right associative, everything else left associative
        if self.op == "^":
            if self.left.precedence() <= mine:
                left = f"({left})"
            if self.right.precedence() < mine:
                right = f"({right})"
        else:
            if self.left.precedence() < mine:
                left = f"({left})"
            if self.right.precedence() <= mine:
                right = f"({right})"

        if self.op == "^":
            return f"{left}^{right}"
        return f"{left} {self.op} {right}"

    def evaluate(self, frame: pd.DataFrame) -> Any:
        left = self.left.evaluate(frame)
        right = self.right.evaluate(frame)
        with np.errstate(divide="ignore", invalid="ignore"):
            return _BINARY_OPS[self.op](left, right)


@dataclass(frozen=True, eq=True)
class Call(Expr):
    """Call of a whitelisted function, e.g. ``log(dist)`` or ``poly(speed, 2)``."""

    func: str
    args: Tuple[Expr, ...] = ()
    kwargs: Tuple[Tuple[str, Expr], ...] = ()
    node_type = NodeType.CALL

    def __post_init__(self):
        if not isinstance(self.func, str) or not self.func.isidentifier():
            raise ExpressionError(expression=self.func, reason="function names must be identifiers")
        # Normalize containers so that equal calls hash equally
        object.__setattr__(self, "args", tuple(as_expr(a) for a in self.args))
        kwargs = self.kwargs.items() if isinstance(self.kwargs, Mapping) else self.kwargs
        object.__setattr__(self, "kwargs", tuple((str(k), as_expr(v)) for k, v in kwargs))

    def keyword(self, name: str) -> Optional[Expr]:
        """Return the keyword argument ``name`` if present."""
        for key, value in self.kwargs:
            if key == name:
                return value
        return None

    def get_variable_names(self) -> Set[str]:
        names: Set[str] = set()
        for arg in self.args:
            names |= arg.get_variable_names()
        for _, value in self.kwargs:
            names |= value.get_variable_names()
        return names

    def get_placeholders(self) -> Set[str]:
        names: Set[str] = set()
        for arg in self.args:
            names |= arg.get_placeholders()
        for _, value in self.kwargs:
            names |= value.get_placeholders()
        return names

    def substitute(self, bindings: Mapping[str, Expr]) -> Expr:
        return Call(
            self.func,
            tuple(arg.substitute(bindings) for arg in self.args),
            tuple((key, value.substitute(bindings)) for key, value in self.kwargs),
        )

    def to_string(self) -> str:
        parts = [arg.to_string() for arg in self.args]
        parts.extend(f"{key} = {value.to_string()}" for key, value in self.kwargs)
        return f"{self.func}({', '.join(parts)})"

    def evaluate(self, frame: pd.DataFrame) -> Any:
        from .functions import get_function

        function = get_function(self.func)
        args = [arg.evaluate(frame) for arg in self.args]
        kwargs = {key: value.evaluate(frame) for key, value in self.kwargs}
        return function(*args, **kwargs)


@dataclass(frozen=True, eq=True)
class Formula(Expr):
    """Model formula ``lhs ~ rhs``; ``lhs`` is None for one-sided formulas."""

    lhs: Optional[Expr]
    rhs: Expr
    node_type = NodeType.FORMULA

    def __post_init__(self):
        sides = (self.rhs,) if self.lhs is None else (self.lhs, self.rhs)
        for side in sides:
            if not isinstance(side, Expr):
                raise ExpressionError(
                    expression=side,
                    reason="formula sides must be expressions; use formula() to capture source text",
                )
            if isinstance(side, Formula):
                raise ExpressionError(
                    expression=side.to_string(),
                    reason="formulas cannot be nested",
                )

    @property
    def has_response(self) -> bool:
        return self.lhs is not None

    def precedence(self) -> int:
        return 0

    def get_variable_names(self) -> Set[str]:
        names = self.rhs.get_variable_names()
        if self.lhs is not None:
            names |= self.lhs.get_variable_names()
        return names

    def get_placeholders(self) -> Set[str]:
        names = self.rhs.get_placeholders()
        if self.lhs is not None:
            names |= self.lhs.get_placeholders()
        return names

    def substitute(self, bindings: Mapping[str, Expr]) -> Expr:
        lhs = self.lhs.substitute(bindings) if self.lhs is not None else None
        return Formula(lhs, self.rhs.substitute(bindings))

    def to_string(self) -> str:
        if self.lhs is None:
            return f"~{self.rhs.to_string()}"
        return f"{self.lhs.to_string()} ~ {self.rhs.to_string()}"

    def evaluate(self, frame: pd.DataFrame) -> Any:
        """Build the design matrix for this formula against ``frame``."""
        from .design_matrix import build_design_matrix

        return build_design_matrix(self, frame)


def formula(lhs: Any, rhs: Any) -> Formula:
    """Build ``lhs ~ rhs`` from expressions or expression source."""
    from .capture import capture

    return Formula(
        capture(lhs, "lhs") if lhs is not None else None,
        capture(rhs, "rhs"),
    )
