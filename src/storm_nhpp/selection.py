"""
Information criteria and ranking of competing rate specifications fitted to the same events.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

import numpy as np
import pandas as pd
from statsmodels.tools.eval_measures import aic, aicc, bic

from .errors import DegenerateAICCorrectionError
from .fitting import FitResult


logger = logging.getLogger(__name__)

CRITERIA = ("aic", "aicc", "bic")


def criterion_value(fit: FitResult, criterion: str = "aicc") -> float:
    """AIC = 2k + 2 NLL, AICc = AIC + 2k(k+1)/(n-k-1), BIC = k log(n) + 2 NLL."""
    k, n, llf = fit.n_params, fit.n_events, -fit.nll
    if criterion == "aic":
        return float(aic(llf, n, k))
    if criterion == "aicc":
        if n - k - 1 <= 0:
            raise DegenerateAICCorrectionError(
                f"AICc undefined for '{fit.name}': n={n}, k={k} gives n - k - 1 = {n - k - 1}"
            )
        return float(aicc(llf, n, k))
    if criterion == "bic":
        if n < 1:
            raise ValueError(f"BIC undefined for '{fit.name}' with no events")
        return float(bic(llf, n, k))
    raise ValueError(f"Unknown criterion '{criterion}', expected one of {CRITERIA}")


def information_criteria(fit: FitResult) -> Dict[str, float]:
    return {name: criterion_value(fit, name) for name in CRITERIA}


def _safe_value(fit: FitResult, criterion: str) -> float:
    try:
        return criterion_value(fit, criterion)
    except (DegenerateAICCorrectionError, ValueError):
        return float("nan")


def rank_models(fits: Iterable[FitResult], criterion: str = "aicc") -> pd.DataFrame:
    """Ranking table ordered by ``criterion``; ties keep their input order.

    Fits whose criterion cannot be computed are left out of the ranking.
    """
    if criterion not in CRITERIA:
        raise ValueError(f"Unknown criterion '{criterion}', expected one of {CRITERIA}")
    rows: List[dict] = []
    for position, fit in enumerate(fits):
        row = {
            "position": position,
            "name": fit.name,
            "n_params": fit.n_params,
            "n_events": fit.n_events,
            "nll": fit.nll,
            "convergence": fit.convergence,
            "converged": fit.converged,
        }
        for name in CRITERIA:
            row[name] = _safe_value(fit, name)
        if not np.isfinite(row[criterion]):
            logger.warning("Excluding %s from %s ranking: criterion is undefined", fit.name, criterion)
            continue
        rows.append(row)
    columns = ["position", "name", "n_params", "n_events", "nll", *CRITERIA, "convergence", "converged"]
    table = pd.DataFrame(rows, columns=columns)
    table = table.sort_values(criterion, kind="mergesort").reset_index(drop=True)
    table[f"delta_{criterion}"] = table[criterion] - (table[criterion].min() if len(table) else 0.0)
    table["rank"] = np.arange(1, len(table) + 1)
    return table


def select_best(
    fits: Iterable[FitResult],
    criterion: str = "aicc",
    require_converged: bool = True,
) -> FitResult:
    fits = list(fits)
    table = rank_models(fits, criterion=criterion)
    if require_converged:
        table = table[table["converged"]]
    if table.empty:
        raise ValueError(f"No fit is eligible for selection by {criterion}")
    return fits[int(table.iloc[0]["position"])]


__all__ = [
    "CRITERIA",
    "criterion_value",
    "information_criteria",
    "rank_models",
    "select_best",
]
