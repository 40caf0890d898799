"""
Design matrix construction for deferlm.

Resolves a formula against a table: applies the missing-value policy,
expands the right-hand side into terms, and turns each term into named
numeric columns. Stateful bases (orthogonal polynomials, factor levels) are
recorded so that the same columns can be rebuilt on new data.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from ..config.settings import NAAction
from ..core.exceptions import ExpressionError, MissingDataError, ModelSpecificationError
from ..utils.logging import get_logger
from ..utils.validation import require_columns, validate_degree, validate_frame
from .functions import poly_basis, poly_coefs, raw_basis
from .nodes import BinaryOp, Call, Expr, Formula, Literal


logger = get_logger(__name__)

INTERCEPT_NAME = "(Intercept)"


@dataclass(frozen=True)
class ModelTerm:
    """One term of a formula's right-hand side: a main effect or an interaction."""

    factors: Tuple[Expr, ...]

    @property
    def label(self) -> str:
        return ":".join(f.to_string() for f in self.factors)

    @property
    def order(self) -> int:
        return len(self.factors)

    def key(self) -> frozenset:
        return frozenset(f.to_string() for f in self.factors)

    def interact(self, other: "ModelTerm") -> "ModelTerm":
        factors = list(self.factors)
        seen = {f.to_string() for f in factors}
        for factor in other.factors:
            if factor.to_string() not in seen:
                factors.append(factor)
                seen.add(factor.to_string())
        return ModelTerm(tuple(factors))


@dataclass
class DesignMatrixInfo:
    """A constructed design matrix and everything needed to rebuild it."""

    formula: Formula
    matrix: np.ndarray
    column_names: List[str]
    term_labels: List[str]
    assign: List[int]
    has_intercept: bool
    response: Optional[np.ndarray] = None
    response_name: Optional[str] = None
    weights: Optional[np.ndarray] = None
    row_index: Optional[pd.Index] = None
    dropped_index: Optional[pd.Index] = None
    n_total_rows: int = 0
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_obs(self) -> int:
        return self.matrix.shape[0]

    @property
    def parameter_count(self) -> int:
        return len(self.column_names)

    @property
    def formula_string(self) -> str:
        return self.formula.to_string()


def expand_terms(rhs: Expr) -> Tuple[List[ModelTerm], bool]:
    """
    Expand a right-hand side into model terms.

    At the top level ``+`` adds terms, ``-`` removes them, ``a * b`` expands
    to ``a + b + a:b``, ``1``/``0`` switch the intercept on/off. Everything
    else (function calls, symbols) is a single term; use ``I()`` for
    arithmetic.

    Returns:
        (terms ordered by interaction order, has_intercept)
    """
    intercept = {"value": True}

    def collect(node: Expr) -> List[ModelTerm]:
        if isinstance(node, BinaryOp):
            if node.op == "+":
                return _merge(collect(node.left), collect(node.right))
            if node.op == "-":
                kept = collect(node.left)
                if isinstance(node.right, Literal) and node.right.value in (0, 1) \
                        and not isinstance(node.right.value, bool):
                    intercept["value"] = False
                    return kept
                removed = {t.key() for t in collect(node.right)}
                return [t for t in kept if t.key() not in removed]
            if node.op == "*":
                left, right = collect(node.left), collect(node.right)
                crossed = [l.interact(r) for l in left for r in right]
                return _merge(_merge(left, right), crossed)
            raise ModelSpecificationError(
                formula=node.to_string(),
                specific_issue=f"operator '{node.op}' has no meaning between formula terms",
                suggestions=[
                    f"Wrap arithmetic in I(): I({node.to_string()})",
                    "Use poly(x, d) for polynomial terms",
                ],
            )

        if isinstance(node, Literal):
            if isinstance(node.value, bool) or node.value not in (0, 1, -1):
                raise ModelSpecificationError(
                    formula=node.to_string(),
                    specific_issue="only 1, 0 and -1 may appear as formula terms",
                )
            intercept["value"] = node.value == 1
            return []

        return [ModelTerm((node,))]

    terms = collect(rhs)
    # Main effects before interactions, otherwise in order of appearance
    terms = sorted(terms, key=lambda t: t.order)
    return terms, intercept["value"]


def _merge(first: List[ModelTerm], second: List[ModelTerm]) -> List[ModelTerm]:
    merged = list(first)
    keys = {t.key() for t in merged}
    for term in second:
        if term.key() not in keys:
            merged.append(term)
            keys.add(term.key())
    return merged


def _is_categorical(values: Any) -> bool:
    if not isinstance(values, pd.Series):
        return False
    return (
        isinstance(values.dtype, pd.CategoricalDtype)
        or values.dtype == object
        or pd.api.types.is_string_dtype(values.dtype)
    )


def _is_boolean(values: Any) -> bool:
    return isinstance(values, pd.Series) and pd.api.types.is_bool_dtype(values.dtype)


class DesignMatrixBuilder:
    """
    Builds design matrices from formulas and tables.

    Each right-hand-side term is resolved against the table and converted to
    one or more named float columns.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def build(
        self,
        formula: Formula,
        data: pd.DataFrame,
        na_action: NAAction = NAAction.OMIT,
        weights: Optional[Expr] = None,
    ) -> DesignMatrixInfo:
        """
        Build the design matrix and response for ``formula``.

        Args:
            formula: Formula to resolve
            data: Table whose columns the formula references
            na_action: Missing-value policy
            weights: Optional expression for observation weights

        Returns:
            DesignMatrixInfo with matrix, response and metadata

        Raises:
            ColumnNotFoundError: If a referenced column is absent
            MissingDataError: If ``na_action`` is FAIL and values are missing
        """
        validate_frame(data)
        na_action = NAAction(na_action)
        self.logger.debug(f"Building design matrix for {formula.to_string()} (na_action={na_action.value})")

        variables = formula.get_variable_names()
        if weights is not None:
            variables |= weights.get_variable_names()
        frame, dropped = self.prepare_frame(data, variables, na_action)

        terms, has_intercept = expand_terms(formula.rhs)
        state: Dict[str, Any] = {}
        columns, names, assign = self._build_columns(terms, has_intercept, frame, state, fit=True)

        if not columns:
            raise ModelSpecificationError(
                formula=formula.to_string(),
                specific_issue="formula produced no design matrix columns",
                suggestions=["Use '~ 1' for an intercept-only model"],
            )

        matrix = np.column_stack(columns) if len(frame) else np.empty((0, len(columns)))

        response = None
        response_name = None
        if formula.lhs is not None:
            response = self._build_response(formula.lhs, frame)
            response_name = formula.lhs.to_string()

        weight_values = None
        if weights is not None:
            weight_values = self._as_vector(weights.evaluate(frame), len(frame), weights.to_string())

        self.logger.debug(
            f"Built design matrix: {matrix.shape} ({len(names)} columns: {names}); "
            f"dropped {len(dropped)} incomplete rows"
        )

        return DesignMatrixInfo(
            formula=formula,
            matrix=matrix,
            column_names=names,
            term_labels=[t.label for t in terms],
            assign=assign,
            has_intercept=has_intercept,
            response=response,
            response_name=response_name,
            weights=weight_values,
            row_index=frame.index,
            dropped_index=dropped,
            n_total_rows=len(data),
            state=state,
        )

    def build_new(self, info: DesignMatrixInfo, data: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
        """
        Rebuild the right-hand-side columns of ``info`` on new data.

        Rows with missing values in referenced columns are kept out of the
        matrix; the returned mask marks which rows of ``data`` are present.

        Returns:
            (matrix for complete rows, boolean mask over ``data`` rows)
        """
        validate_frame(data, "new_data")
        variables = info.formula.rhs.get_variable_names()
        require_columns(data, sorted(variables))

        complete = ~data[sorted(variables)].isna().any(axis=1) if variables else pd.Series(True, index=data.index)
        frame = data.loc[complete]

        terms, has_intercept = expand_terms(info.formula.rhs)
        columns, names, _ = self._build_columns(terms, has_intercept, frame, info.state, fit=False)

        if names != info.column_names:
            raise ModelSpecificationError(
                formula=info.formula_string,
                specific_issue=f"new data produced columns {names}, expected {info.column_names}",
                suggestions=["Check that categorical columns use the same levels as the fitted data"],
            )

        matrix = np.column_stack(columns) if len(frame) else np.empty((0, len(columns)))
        return matrix, complete.to_numpy()

    def prepare_frame(
        self,
        data: pd.DataFrame,
        variables: Set[str],
        na_action: NAAction,
    ) -> Tuple[pd.DataFrame, pd.Index]:
        """
        Apply the missing-value policy to the referenced columns.

        Returns:
            (frame of complete rows, index of dropped rows)
        """
        names = require_columns(data, sorted(variables))
        if not names:
            return data, data.index[:0]

        missing = data[names].isna()
        incomplete = missing.any(axis=1)
        n_incomplete = int(incomplete.sum())

        if n_incomplete == 0:
            return data, data.index[:0]

        if na_action == NAAction.FAIL:
            raise MissingDataError(
                columns=[c for c in names if missing[c].any()],
                n_missing_rows=n_incomplete,
                n_rows=len(data),
            )

        self.logger.debug(f"Dropping {n_incomplete} of {len(data)} rows with missing values")
        return data.loc[~incomplete], data.index[incomplete.to_numpy()]

    def _build_columns(
        self,
        terms: List[ModelTerm],
        has_intercept: bool,
        frame: pd.DataFrame,
        state: Dict[str, Any],
        fit: bool,
    ) -> Tuple[List[np.ndarray], List[str], List[int]]:
        columns: List[np.ndarray] = []
        names: List[str] = []
        assign: List[int] = []

        n = len(frame)
        if has_intercept:
            columns.append(np.ones(n))
            names.append(INTERCEPT_NAME)
            assign.append(0)

        full_coding_available = not has_intercept
        for position, term in enumerate(terms, start=1):
            if term.order == 1:
                block, block_names, was_factor = self._build_factor_columns(
                    term.factors[0], frame, state, fit, drop_first=not full_coding_available
                )
                if was_factor:
                    full_coding_available = False
            else:
                block, block_names = self._build_interaction_columns(term, frame, state, fit)

            columns.extend(block)
            names.extend(block_names)
            assign.extend([position] * len(block))

        return columns, names, assign

    def _build_factor_columns(
        self,
        expr: Expr,
        frame: pd.DataFrame,
        state: Dict[str, Any],
        fit: bool,
        drop_first: bool = True,
    ) -> Tuple[List[np.ndarray], List[str], bool]:
        """Build columns for one factor; returns (columns, names, was_categorical)."""
        label = expr.to_string()
        n = len(frame)

        if isinstance(expr, Call) and expr.func == "poly":
            block, block_names = self._build_polynomial_columns(expr, frame, state, fit)
            return block, block_names, False

        values = expr.evaluate(frame)

        if _is_boolean(values):
            return [values.to_numpy(dtype=float)], [f"{label}TRUE"], False

        if _is_categorical(values):
            block, block_names = self._build_categorical_columns(label, values, state, fit, drop_first)
            return block, block_names, True

        if isinstance(values, pd.DataFrame):
            values = values.to_numpy(dtype=float)

        if isinstance(values, np.ndarray) and values.ndim == 2:
            block = [values[:, j].astype(float) for j in range(values.shape[1])]
            return block, [f"{label}{j + 1}" for j in range(values.shape[1])], False

        return [self._as_vector(values, n, label)], [label], False

    def _build_polynomial_columns(
        self,
        expr: Call,
        frame: pd.DataFrame,
        state: Dict[str, Any],
        fit: bool,
    ) -> Tuple[List[np.ndarray], List[str]]:
        """Build columns for poly(x, degree, raw = ...)."""
        label = expr.to_string()
        if not expr.args:
            raise ModelSpecificationError(formula=label, specific_issue="poly() needs a variable")

        degree_expr = expr.args[1] if len(expr.args) > 1 else expr.keyword("degree")
        raw_expr = expr.args[2] if len(expr.args) > 2 else expr.keyword("raw")
        degree = validate_degree(degree_expr.evaluate(frame) if degree_expr is not None else 1)
        raw = bool(raw_expr.evaluate(frame)) if raw_expr is not None else False

        x = self._as_vector(expr.args[0].evaluate(frame), len(frame), expr.args[0].to_string())

        if raw:
            basis = raw_basis(x, degree) if len(x) else np.empty((0, degree))
        else:
            if fit:
                state[label] = poly_coefs(x, degree)
            basis = poly_basis(x, degree, state[label]) if len(x) else np.empty((0, degree))

        names = [f"{label}{power}" for power in range(1, degree + 1)]
        return [basis[:, j] for j in range(degree)], names

    def _build_categorical_columns(
        self,
        label: str,
        values: pd.Series,
        state: Dict[str, Any],
        fit: bool,
        drop_first: bool,
    ) -> Tuple[List[np.ndarray], List[str]]:
        """Treatment-coded indicator columns for a categorical variable."""
        key = f"levels:{label}"
        if fit:
            if isinstance(values.dtype, pd.CategoricalDtype):
                present = set(values.dropna().unique())
                levels = [c for c in values.cat.categories if c in present]
            else:
                levels = sorted(values.dropna().unique(), key=str)
            state[key] = levels
        levels = state[key]

        unknown = set(values.dropna().unique()) - set(levels)
        if unknown:
            raise ModelSpecificationError(
                formula=label,
                specific_issue=f"factor {label} has new level(s) {sorted(map(str, unknown))}",
                suggestions=["Predict only on levels seen when fitting"],
            )

        coded = levels[1:] if drop_first else levels
        observed = values.to_numpy()
        block = [(observed == level).astype(float) for level in coded]
        return block, [f"{label}{level}" for level in coded]

    def _build_interaction_columns(
        self,
        term: ModelTerm,
        frame: pd.DataFrame,
        state: Dict[str, Any],
        fit: bool,
    ) -> Tuple[List[np.ndarray], List[str]]:
        """Row-wise products of every combination of the factors' columns."""
        columns = [np.ones(len(frame))]
        names = [""]
        for factor in term.factors:
            block, block_names, _ = self._build_factor_columns(factor, frame, state, fit, drop_first=True)
            columns = [c * b for c in columns for b in block]
            names = [f"{n}:{bn}" if n else bn for n in names for bn in block_names]
        return columns, names

    def _build_response(self, lhs: Expr, frame: pd.DataFrame) -> np.ndarray:
        values = lhs.evaluate(frame)
        if _is_categorical(values):
            raise ModelSpecificationError(
                formula=lhs.to_string(),
                specific_issue="the response must be numeric",
                suggestions=["Linear models need a numeric response column"],
            )
        return self._as_vector(values, len(frame), lhs.to_string())

    def _as_vector(self, values: Any, n: int, label: str) -> np.ndarray:
        """Coerce an evaluated expression to a float vector of length n."""
        if np.isscalar(values):
            return np.full(n, float(values))

        try:
            array = np.asarray(values, dtype=float)
        except (TypeError, ValueError) as e:
            raise ExpressionError(expression=label, reason=f"not numeric: {e}") from None

        if array.ndim != 1 or len(array) != n:
            raise ExpressionError(
                expression=label,
                reason=f"evaluated to shape {array.shape}, expected ({n},)",
            )
        return array


def build_design_matrix(
    formula: Formula,
    data: pd.DataFrame,
    na_action: NAAction = NAAction.OMIT,
    weights: Optional[Expr] = None,
) -> DesignMatrixInfo:
    """
    Convenience function to build a design matrix.

    Args:
        formula: Formula to resolve
        data: Table referenced by the formula
        na_action: Missing-value policy
        weights: Optional weights expression

    Returns:
        DesignMatrixInfo with constructed matrix
    """
    builder = DesignMatrixBuilder()
    return builder.build(formula, data, na_action=na_action, weights=weights)
