"""
Table helpers for deferlm.

Loading CSV/Parquet files, categorical (factor) conversion and a quick
per-column description of a table.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

from ..core.exceptions import DataFormatError
from ..utils.logging import get_logger
from ..utils.validation import require_columns, validate_frame


logger = get_logger(__name__)

_READERS = {
    ".csv": pd.read_csv,
    ".tsv": lambda path, **kwargs: pd.read_csv(path, sep="\t", **kwargs),
    ".parquet": pd.read_parquet,
}


def load_table(
    file_path: Union[str, Path],
    categorical: Optional[Iterable[str]] = None,
    **kwargs,
) -> pd.DataFrame:
    """
    Load a table from a CSV, TSV or Parquet file.

    Args:
        file_path: Path to the file
        categorical: Columns to convert to ``category`` dtype
        **kwargs: Additional arguments for the pandas reader

    Returns:
        The loaded DataFrame

    Raises:
        DataFormatError: If the file is missing, has an unsupported suffix
            or cannot be parsed
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise DataFormatError(
            specific_issue=f"File not found: {file_path}",
            suggestions=[
                "Check file path and name",
                "Ensure file exists and is readable",
            ],
        )

    reader = _READERS.get(file_path.suffix.lower())
    if reader is None:
        raise DataFormatError(
            specific_issue=f"Unsupported file format: {file_path.suffix}",
            suggestions=[
                f"Supported formats: {', '.join(sorted(_READERS))}",
                "Convert file to CSV format",
            ],
        )

    try:
        data = reader(file_path, **kwargs)
    except (OSError, ValueError, ImportError) as e:
        raise DataFormatError(
            specific_issue=f"Failed to load file: {e}",
            suggestions=[
                "Check file format and encoding",
                "Parquet files need the optional pyarrow dependency (pip install deferlm[parquet])",
            ],
        ) from e

    logger.info(f"Loaded {file_path.name}", rows=len(data), columns=len(data.columns))

    if categorical:
        data = as_categorical(data, categorical)
    return data


def as_categorical(
    data: pd.DataFrame,
    columns: Union[str, Iterable[str]],
    levels: Optional[Union[Sequence, Dict[str, Sequence]]] = None,
) -> pd.DataFrame:
    """
    Convert columns to ``category`` dtype on a copy of ``data``.

    Args:
        data: Source table (not modified)
        columns: Column name or names
        levels: Level order, either one sequence for all columns or a
            mapping from column name to levels; observed values sorted
            otherwise

    Returns:
        Copy of ``data`` with the columns converted
    """
    validate_frame(data)
    names = require_columns(data, columns)

    result = data.copy()
    for name in names:
        column_levels = levels.get(name) if isinstance(levels, dict) else levels
        if column_levels is None:
            result[name] = result[name].astype("category")
            continue

        unknown = set(result[name].dropna().unique()) - set(column_levels)
        if unknown:
            raise DataFormatError(
                specific_issue=f"column {name!r} has values outside the given levels: {sorted(map(str, unknown))}",
                suggestions=["Include every observed value in levels"],
            )
        result[name] = pd.Categorical(result[name], categories=list(column_levels))

    return result


def describe_table(data: pd.DataFrame) -> pd.DataFrame:
    """
    One row per column: name, dtype, missing count and level count.

    Level count is the number of categories for categorical columns, the
    number of distinct values for text columns and NA for numeric columns.
    """
    validate_frame(data)

    rows: List[Dict] = []
    for name in data.columns:
        column = data[name]
        if isinstance(column.dtype, pd.CategoricalDtype):
            n_levels = len(column.cat.categories)
        elif column.dtype == object or pd.api.types.is_string_dtype(column.dtype):
            n_levels = column.nunique(dropna=True)
        else:
            n_levels = pd.NA
        rows.append({
            "column": name,
            "dtype": str(column.dtype),
            "n_missing": int(column.isna().sum()),
            "n_levels": n_levels,
        })

    return pd.DataFrame(rows, columns=["column", "dtype", "n_missing", "n_levels"])
