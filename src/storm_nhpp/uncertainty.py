"""
Approximate parameter covariance from the numerical Hessian of the NLL at the optimum.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
from statsmodels.tools.numdiff import approx_hess3

from .errors import HessianRepairWarning
from .fitting import FitResult


logger = logging.getLogger(__name__)


@dataclass
class UncertaintyEstimate:
    hessian: np.ndarray
    covariance: np.ndarray
    std_errors: np.ndarray
    repaired: bool
    min_eigenvalue: float

    @property
    def clean(self) -> bool:
        return not self.repaired


def nearest_positive_definite(matrix: np.ndarray, rel_tol: float = 1e-8) -> np.ndarray:
    """Symmetrise and clip eigenvalues so the matrix is positive definite."""
    sym = 0.5 * (matrix + matrix.T)
    eigvals, eigvecs = np.linalg.eigh(sym)
    floor = max(float(np.max(np.abs(eigvals))) * rel_tol, 1e-12)
    clipped = np.maximum(eigvals, floor)
    return (eigvecs * clipped) @ eigvecs.T


def _is_positive_definite(matrix: np.ndarray) -> bool:
    try:
        np.linalg.cholesky(matrix)
    except np.linalg.LinAlgError:
        return False
    return True


def estimate_uncertainty(fit: FitResult) -> UncertaintyEstimate:
    """Invert the Hessian of the NLL at ``fit.theta``; ``fit.theta`` itself is untouched.

    A Hessian that is not positive definite is repaired by eigenvalue
    clipping; the estimate is then flagged ``repaired`` and a
    :class:`HessianRepairWarning` is emitted.
    """
    if fit.likelihood is None:
        raise ValueError(f"Fit '{fit.name}' carries no likelihood to differentiate")
    theta = np.asarray(fit.theta, dtype=float)
    hessian = np.atleast_2d(approx_hess3(theta.copy(), fit.likelihood.objective))
    k = theta.size

    if not np.all(np.isfinite(hessian)):
        warnings.warn(
            f"Hessian for '{fit.name}' is not finite; covariance is undefined",
            HessianRepairWarning,
            stacklevel=2,
        )
        nan = np.full((k, k), np.nan)
        return UncertaintyEstimate(hessian, nan, np.full(k, np.nan), True, float("nan"))

    sym = 0.5 * (hessian + hessian.T)
    min_eig = float(np.min(np.linalg.eigvalsh(sym)))
    repaired = not _is_positive_definite(sym)
    if repaired:
        warnings.warn(
            f"Hessian for '{fit.name}' is not positive definite (min eigenvalue {min_eig:.3g}); "
            "repaired by eigenvalue clipping",
            HessianRepairWarning,
            stacklevel=2,
        )
        logger.warning("Repaired non positive-definite Hessian for %s", fit.name)
        sym = nearest_positive_definite(sym)
    covariance = np.linalg.inv(sym)
    std_errors = np.sqrt(np.clip(np.diag(covariance), 0.0, None))
    return UncertaintyEstimate(hessian, covariance, std_errors, repaired, min_eig)


def attach_uncertainty(fit: FitResult) -> UncertaintyEstimate:
    fit.uncertainty = estimate_uncertainty(fit)
    return fit.uncertainty


__all__ = [
    "UncertaintyEstimate",
    "nearest_positive_definite",
    "estimate_uncertainty",
    "attach_uncertainty",
]
