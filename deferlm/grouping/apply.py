"""
Grouped execution for deferlm.

Splits a table by key columns, calls a function once per partition and
collects one result per partition into a table keyed by the partition key.
Partitions can run on a thread pool; results are always collected in key
order so the output does not depend on scheduling.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..config.settings import ErrorPolicy, get_default_config
from ..models.poly import PolyModelBuilder
from ..utils.logging import get_logger, log_performance
from ..utils.validation import require_columns, validate_frame


logger = get_logger(__name__)

_SKIPPED = object()


def _as_key_list(by: Union[str, Sequence[str]]) -> List[str]:
    keys = [by] if isinstance(by, str) else list(by)
    if not keys:
        raise ValueError("at least one grouping column is required")
    return keys


def _run_partition(
    func: Callable[..., Any],
    key: Tuple,
    partition: pd.DataFrame,
    args: tuple,
    kwargs: dict,
    on_error: ErrorPolicy,
) -> Any:
    """Call ``func`` on one partition, honouring the error policy."""
    try:
        return func(partition, *args, **kwargs)
    except Exception as e:
        if on_error == ErrorPolicy.RAISE:
            raise
        logger.warning(f"Skipping partition {key}: {type(e).__name__}: {e}")
        return _SKIPPED


@log_performance
def group_apply(
    data: pd.DataFrame,
    by: Union[str, Sequence[str]],
    func: Callable[..., Any],
    *args,
    result_column: Optional[str] = None,
    parallel: Optional[bool] = None,
    max_workers: Optional[int] = None,
    on_error: Optional[Union[str, ErrorPolicy]] = None,
    **kwargs,
) -> pd.DataFrame:
    """
    Apply ``func`` to every partition of ``data``.

    Args:
        data: Table to partition
        by: Grouping column name or names
        func: Called as ``func(partition, *args, **kwargs)``
        *args: Positional arguments forwarded to ``func``
        result_column: Name of the result column (config default ``"fit"``)
        parallel: Run partitions on a thread pool (config default False)
        max_workers: Thread pool size (config default)
        on_error: ``"raise"`` propagates the first failure, ``"skip"`` logs
            it and leaves the partition out
        **kwargs: Keyword arguments forwarded to ``func``

    Returns:
        DataFrame with the key columns followed by an object column holding
        one result per observed key value, sorted by key

    Examples:
        >>> fits = group_apply(cars, "group", lm_poly_raw, col.dist, col.speed, 2)
        >>> fits["fit"].iloc[0].params
    """
    validate_frame(data)
    keys = require_columns(data, _as_key_list(by))

    grouping = get_default_config().grouping
    result_column = result_column or grouping.result_column
    parallel = grouping.parallel if parallel is None else parallel
    max_workers = max_workers or grouping.max_workers
    on_error = ErrorPolicy(on_error) if on_error is not None else grouping.on_error

    if result_column in keys:
        raise ValueError(f"result_column {result_column!r} clashes with a grouping column")

    groups = data.groupby(keys, sort=True, observed=True, dropna=True)
    partitions = [
        (key if isinstance(key, tuple) else (key,), frame.copy())
        for key, frame in groups
    ]
    logger.info(
        f"Applying {getattr(func, '__name__', type(func).__name__)} to {len(partitions)} partitions",
        by=keys,
        parallel=parallel,
    )

    if parallel and len(partitions) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(_run_partition, func, key, frame, args, kwargs, on_error)
                for key, frame in partitions
            ]
            results = [future.result() for future in futures]
    else:
        results = [_run_partition(func, key, frame, args, kwargs, on_error) for key, frame in partitions]

    key_table = groups.size().reset_index()[keys]
    kept = [i for i, result in enumerate(results) if result is not _SKIPPED]
    if len(kept) < len(results):
        logger.warning(f"Skipped {len(results) - len(kept)} of {len(results)} partitions")

    output = key_table.iloc[kept].reset_index(drop=True)
    values = np.empty(len(kept), dtype=object)
    for position, i in enumerate(kept):
        values[position] = results[i]
    output[result_column] = values
    return output


def unnest_results(
    grouped: pd.DataFrame,
    column: str = "fit",
    method: str = "tidy",
) -> pd.DataFrame:
    """
    Expand stored fits into a long table keyed by the partition key.

    Args:
        grouped: Output of ``group_apply``
        column: Column holding the fit results
        method: ``"tidy"`` (one row per coefficient) or ``"glance"`` (one
            row per fit)

    Returns:
        DataFrame with the key columns followed by the expanded columns
    """
    if method not in ("tidy", "glance"):
        raise ValueError(f"method must be 'tidy' or 'glance', got {method!r}")
    require_columns(grouped, column)

    keys = [c for c in grouped.columns if c != column]
    pieces = []
    for _, row in grouped.iterrows():
        table = getattr(row[column], method)()
        for position, key in enumerate(keys):
            table.insert(position, key, row[key])
        pieces.append(table)

    if not pieces:
        return pd.DataFrame(columns=keys)

    long = pd.concat(pieces, ignore_index=True)
    for key in keys:
        long[key] = long[key].astype(grouped[key].dtype)
    return long


def fit_poly_by_group(
    data: pd.DataFrame,
    by: Union[str, Sequence[str]],
    response: Any,
    predictor: Any,
    degree: int = 1,
    *,
    result_column: Optional[str] = None,
    parallel: Optional[bool] = None,
    max_workers: Optional[int] = None,
    on_error: Optional[Union[str, ErrorPolicy]] = None,
    **fit_options,
) -> pd.DataFrame:
    """
    Fit ``response ~ poly(predictor, degree, raw = TRUE)`` in every partition.

    The expressions are captured once, before any partition is fitted, so an
    evaluated argument fails immediately rather than once per partition.

    Args:
        data: Table to partition
        by: Grouping column name or names
        response: Deferred response expression
        predictor: Deferred predictor expression
        degree: Polynomial degree
        **fit_options: Options for the builder (``raw``, ``na_action``, ...)

    Returns:
        ``group_apply`` output with one fit per partition
    """
    builder = PolyModelBuilder(degree, **fit_options)
    spec = builder.formula(response, predictor)
    logger.debug(f"Fitting {spec.to_string()} by {by}")

    return group_apply(
        data,
        by,
        builder,
        spec.lhs,
        spec.rhs.args[0],
        result_column=result_column,
        parallel=parallel,
        max_workers=max_workers,
        on_error=on_error,
    )
