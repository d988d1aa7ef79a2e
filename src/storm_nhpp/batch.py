"""
Fit a catalogue of rate specifications to one event series.

Each candidate is fitted independently: an optimiser that fails to converge
leaves a flagged result, and an exception raised while fitting one candidate
is recorded without stopping the others.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .events import EventSeries
from .fitting import FitOptions, FitResult, fit_rate_model
from .likelihood import BusyTimePolicy, active_duration_busy_time
from .rate_spec import RateSpecification
from .rate_terms import Covariate
from .selection import CRITERIA, criterion_value
from .uncertainty import attach_uncertainty


logger = logging.getLogger(__name__)


@dataclass
class BatchFit:
    results: List[FitResult] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def non_converged(self) -> List[FitResult]:
        return [fit for fit in self.results if not fit.converged]

    @property
    def discrepancy_count(self) -> int:
        return len(self.failures) + len(self.non_converged)

    def summary(self) -> pd.DataFrame:
        rows = []
        for fit in self.results:
            row = {
                "name": fit.name,
                "equation": fit.equation,
                "n_params": fit.n_params,
                "params": " ".join(f"{v:.6g}" for v in fit.theta),
                "std_errors": "",
                "nll": fit.nll,
            }
            for name in CRITERIA:
                try:
                    row[name] = criterion_value(fit, name)
                except ValueError:
                    row[name] = np.nan
            row["convergence"] = fit.convergence
            row["repaired"] = None
            if fit.uncertainty is not None:
                row["std_errors"] = " ".join(f"{v:.6g}" for v in fit.uncertainty.std_errors)
                row["repaired"] = fit.uncertainty.repaired
            rows.append(row)
        columns = ["name", "equation", "n_params", "params", "std_errors", "nll", *CRITERIA, "convergence", "repaired"]
        return pd.DataFrame(rows, columns=columns)


def _fit_candidate(
    events: EventSeries,
    spec: RateSpecification,
    options: FitOptions,
    covariate: Optional[Covariate],
    busy_time: BusyTimePolicy,
    compute_uncertainty: bool,
    prior_fit: Optional[FitResult] = None,
) -> FitResult:
    fit = fit_rate_model(events, spec, options, covariate=covariate, busy_time=busy_time, prior_fit=prior_fit)
    if compute_uncertainty:
        attach_uncertainty(fit)
    return fit


def _warm_start_source(spec: RateSpecification, done: Sequence[FitResult]) -> Optional[FitResult]:
    names = set(spec.term_names)
    nested = [fit for fit in done if fit.converged and set(fit.spec.term_names) <= names]
    if not nested:
        return None
    return min(nested, key=lambda fit: fit.nll)


def fit_catalogue(
    events: EventSeries,
    specs: Sequence[RateSpecification],
    options: Optional[FitOptions] = None,
    covariate: Optional[Covariate] = None,
    busy_time: BusyTimePolicy = active_duration_busy_time,
    results: Optional[List[FitResult]] = None,
    compute_uncertainty: bool = True,
    warm_start: bool = False,
    max_workers: Optional[int] = None,
) -> BatchFit:
    """Fit every specification in ``specs`` to ``events``.

    ``results`` is appended to in place when given. ``warm_start`` starts each
    candidate from the best converged earlier fit whose terms it contains;
    it needs sequential fitting and cannot be combined with ``max_workers``.
    """
    if warm_start and max_workers:
        raise ValueError("warm_start chains fits sequentially; it cannot be used with max_workers")
    options = options or FitOptions()
    batch = BatchFit(results=results if results is not None else [])

    if max_workers:
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            futures = [
                (spec, pool.submit(_fit_candidate, events, spec, options, covariate, busy_time, compute_uncertainty))
                for spec in specs
            ]
            for spec, future in futures:
                try:
                    batch.results.append(future.result())
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Failed to fit %s: %s", spec.name, exc)
                    batch.failures.append((spec.name, str(exc)))
    else:
        done: List[FitResult] = []
        for spec in specs:
            prior = _warm_start_source(spec, done) if warm_start else None
            try:
                fit = _fit_candidate(events, spec, options, covariate, busy_time, compute_uncertainty, prior)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to fit %s: %s", spec.name, exc)
                batch.failures.append((spec.name, str(exc)))
                continue
            done.append(fit)
            batch.results.append(fit)

    if batch.discrepancy_count:
        logger.warning(
            "%d of %d candidates failed or did not converge",
            batch.discrepancy_count,
            len(specs),
        )
    return batch


__all__ = ["BatchFit", "fit_catalogue"]
