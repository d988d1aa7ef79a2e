"""
Exception and warning types raised by the storm NHPP fitting engine.
"""

from __future__ import annotations


class SpecificationError(ValueError):
    """Malformed rate specification (bad formula, parameter-count mismatch)."""


class NonPositiveRateError(ArithmeticError):
    """The intensity is zero or negative at an observed event time."""

    def __init__(self, message: str, count: int = 1) -> None:
        super().__init__(message)
        self.count = count


class DegenerateAICCorrectionError(ValueError):
    """The small-sample AIC correction is undefined because n - k - 1 <= 0."""


class HessianRepairWarning(RuntimeWarning):
    """The Hessian was not positive definite and had to be repaired."""


__all__ = [
    "SpecificationError",
    "NonPositiveRateError",
    "DegenerateAICCorrectionError",
    "HessianRepairWarning",
]
