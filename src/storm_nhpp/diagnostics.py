"""
Goodness-of-fit checks for a fitted rate model.
"""

from __future__ import annotations

from typing import Dict, Sequence

import numpy as np
from scipy import stats

from .fitting import FitResult


def rescaled_interarrival_test(fit: FitResult) -> Dict[str, float]:
    """KS test of the time-rescaled inter-arrivals against Exp(1).

    Under a correct model the integrated intensity over each observed gap
    (busy windows excluded) is an independent unit exponential.
    """
    if fit.likelihood is None:
        raise ValueError(f"Fit '{fit.name}' carries no likelihood to rescale")
    rescaled = fit.likelihood.rescaled_interarrivals(fit.theta)
    if rescaled.size == 0:
        return {"stat": float("nan"), "pvalue": float("nan"), "n": 0}
    res = stats.kstest(rescaled, "expon")
    return {"stat": float(res.statistic), "pvalue": float(res.pvalue), "n": int(rescaled.size)}


def poisson_dispersion(counts: Sequence[float]) -> Dict[str, float]:
    """Variance-to-mean ratio of period counts with a chi-square dispersion test."""
    arr = np.asarray(counts, dtype=float)
    if arr.size < 2:
        raise ValueError("Need at least two periods to estimate dispersion")
    mean = float(arr.mean())
    var = float(arr.var(ddof=1))
    if mean <= 0:
        return {"mean": mean, "variance": var, "dispersion_index": float("nan"), "pvalue": float("nan")}
    index = var / mean
    dof = arr.size - 1
    statistic = index * dof
    pvalue = float(2.0 * min(stats.chi2.sf(statistic, dof), stats.chi2.cdf(statistic, dof)))
    return {"mean": mean, "variance": var, "dispersion_index": index, "pvalue": pvalue}


__all__ = ["rescaled_interarrival_test", "poisson_dispersion"]
