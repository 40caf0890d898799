"""Model fitting for deferlm."""

from .base import LinearModelResult
from .linear import LinearModel, lm
from .poly import PolyModelBuilder, lm_poly_raw

__all__ = [
    "LinearModelResult",
    "LinearModel",
    "lm",
    "PolyModelBuilder",
    "lm_poly_raw",
]
