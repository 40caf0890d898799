"""Grouped execution for deferlm."""

from .apply import group_apply, unnest_results, fit_poly_by_group

__all__ = [
    "group_apply",
    "unnest_results",
    "fit_poly_by_group",
]
