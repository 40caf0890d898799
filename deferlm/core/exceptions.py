"""
Exception classes for deferlm.

Provides rich error information with actionable suggestions so that a failed
fit explains itself at the point where it is raised.
"""

from typing import List, Optional, Dict, Any


class DeferLMError(Exception):
    """
    Base exception class for deferlm with rich error information.

    Carries suggestions for resolution, a short error code and a context
    dictionary describing the failing call.
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.suggestions = suggestions or []
        self.error_code = error_code
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error message with suggestions."""
        message = self.message

        if self.error_code:
            message = f"[{self.error_code}] {message}"

        if self.suggestions:
            message += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                message += f"\n  {i}. {suggestion}"

        return message


class ExpressionError(DeferLMError):
    """Exception raised when an expression cannot be captured, parsed or evaluated."""

    def __init__(
        self,
        expression: Optional[Any] = None,
        reason: Optional[str] = None,
        argument: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
        **kwargs
    ):
        if argument and reason:
            message = f"Invalid expression for '{argument}': {reason}"
        elif reason:
            message = f"Invalid expression {expression!r}: {reason}"
        else:
            message = f"Invalid expression: {expression!r}"

        if suggestions is None:
            suggestions = [
                "Pass a column reference such as col.speed",
                "Or pass expression source such as 'log(dist)'",
                "Do not pass already evaluated values (Series, arrays, numbers)",
            ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="EXPRESSION",
            context={"expression": repr(expression), "argument": argument, "reason": reason},
            **kwargs
        )


class ModelSpecificationError(DeferLMError):
    """Exception raised for model specification issues."""

    def __init__(
        self,
        formula: Optional[str] = None,
        specific_issue: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
        **kwargs
    ):
        if formula and specific_issue:
            message = f"Invalid model specification '{formula}': {specific_issue}"
        elif specific_issue:
            message = f"Invalid model specification: {specific_issue}"
        elif formula:
            message = f"Invalid formula specification: {formula}"
        else:
            message = "Model specification error"

        if suggestions is None:
            suggestions = [
                "Check formula syntax (e.g. 'dist ~ speed', 'dist ~ poly(speed, 2)')",
                "Polynomial degree must be an integer >= 1",
                "Ensure the right-hand side produces at least one column",
            ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="MODEL_SPEC",
            context={"formula": formula, "specific_issue": specific_issue},
            **kwargs
        )


class DataFormatError(DeferLMError):
    """Exception raised for table format issues."""

    def __init__(
        self,
        specific_issue: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
        error_code: str = "DATA_FORMAT",
        context: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        message = f"Data format issue: {specific_issue}" if specific_issue else "Data format validation failed"

        if suggestions is None:
            suggestions = [
                "Check the table structure and column names",
                "Supported file types: .csv, .parquet",
            ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code=error_code,
            context=context or {"specific_issue": specific_issue},
            **kwargs
        )


class ColumnNotFoundError(DataFormatError, KeyError):
    """Exception raised when an expression references a column absent from the table."""

    def __init__(
        self,
        missing_columns: List[str],
        available_columns: Optional[List[str]] = None,
        **kwargs
    ):
        self.missing_columns = list(missing_columns)
        self.available_columns = list(available_columns or [])

        suggestions = [
            "Check column name spelling and case",
            "Use backticks or col['name'] for names that are not identifiers",
        ]
        if self.available_columns:
            suggestions.insert(0, f"Available columns: {', '.join(map(str, self.available_columns))}")

        super().__init__(
            specific_issue=f"column(s) not found: {self.missing_columns}",
            suggestions=suggestions,
            error_code="COLUMN_NOT_FOUND",
            context={
                "missing_columns": self.missing_columns,
                "available_columns": self.available_columns,
            },
            **kwargs
        )

    def __str__(self) -> str:
        return DeferLMError.__str__(self)


class MissingDataError(DataFormatError):
    """Exception raised when missing values are present and the policy forbids them."""

    def __init__(
        self,
        columns: List[str],
        n_missing_rows: int,
        n_rows: int,
        **kwargs
    ):
        self.columns = list(columns)
        self.n_missing_rows = n_missing_rows
        self.n_rows = n_rows

        super().__init__(
            specific_issue=(
                f"missing values in object: {n_missing_rows} of {n_rows} rows "
                f"have NA in column(s) {self.columns}"
            ),
            suggestions=[
                "Use na_action='omit' to drop incomplete rows before fitting",
                "Impute or filter missing values explicitly",
            ],
            error_code="MISSING_DATA",
            context={
                "columns": self.columns,
                "n_missing_rows": n_missing_rows,
                "n_rows": n_rows,
            },
            **kwargs
        )


class FitError(DeferLMError):
    """Exception raised when the least-squares fit cannot be computed."""

    def __init__(
        self,
        reason: Optional[str] = None,
        formula: Optional[str] = None,
        n_obs: Optional[int] = None,
        n_coef: Optional[int] = None,
        **kwargs
    ):
        if formula and reason:
            message = f"Fit of '{formula}' failed: {reason}"
        elif reason:
            message = f"Fit failed: {reason}"
        else:
            message = "Fit failed"

        suggestions = [
            "Check that enough complete rows remain after missing-value handling",
            "Lower the polynomial degree",
            "Check for infinite values in referenced columns",
        ]
        if n_obs is not None and n_coef is not None and n_obs < n_coef:
            suggestions.insert(0, f"Only {n_obs} usable rows for {n_coef} coefficients")

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="FIT",
            context={"formula": formula, "reason": reason, "n_obs": n_obs, "n_coef": n_coef},
            **kwargs
        )


class ConfigurationError(DeferLMError):
    """Exception raised for configuration issues."""

    def __init__(self, config_key: Optional[str] = None, reason: Optional[str] = None, **kwargs):
        if config_key and reason:
            message = f"Invalid configuration for '{config_key}': {reason}"
        elif config_key:
            message = f"Invalid configuration for '{config_key}'"
        else:
            message = f"Configuration error: {reason}" if reason else "Configuration error"

        suggestions = [
            "Check configuration file syntax",
            "Check environment variable formatting",
            "Use deferlm.get_config() to inspect current settings",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="CONFIG",
            context={"config_key": config_key, "reason": reason},
            **kwargs
        )
