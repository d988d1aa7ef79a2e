"""
Negative log-likelihood of a non-homogeneous Poisson process with busy-time exclusion.

While an event is active (storm duration plus the inter-event gap) no new
event can start, so that window contributes nothing to the integral term:

    NLL = -sum_i log lambda(t_i) + sum_gaps integral lambda(t) dt

with gaps [x0, t_1], [t_i + b_i, t_{i+1}] and, if the observation end T is
known, [t_n + b_n, T].
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from .errors import NonPositiveRateError, SpecificationError
from .events import EventSeries
from .integration import RateIntegrator
from .rate_spec import RateSpecification
from .rate_terms import Covariate

PENALTY = 1e10

BusyTimePolicy = Callable[[EventSeries], np.ndarray]


def active_duration_busy_time(events: EventSeries) -> np.ndarray:
    return np.asarray(events.active_durations, dtype=float)


def no_busy_time(events: EventSeries) -> np.ndarray:
    return np.zeros(events.n_events)


class ScaledBusyTime:
    """Busy window as a fixed fraction of each event's active duration."""

    def __init__(self, factor: float) -> None:
        if factor < 0:
            raise ValueError(f"Busy-time factor must be non-negative, got {factor}")
        self.factor = float(factor)

    def __call__(self, events: EventSeries) -> np.ndarray:
        return self.factor * np.asarray(events.active_durations, dtype=float)


class LikelihoodEngine:
    def __init__(
        self,
        events: EventSeries,
        spec: RateSpecification,
        covariate: Optional[Covariate] = None,
        busy_time: BusyTimePolicy = active_duration_busy_time,
        integrator: Optional[RateIntegrator] = None,
    ) -> None:
        if spec.requires_covariate and covariate is None:
            raise SpecificationError(f"Specification '{spec.name}' needs a covariate lookup")
        self.events = events
        self.spec = spec
        self.covariate = covariate
        self.busy_time = busy_time
        self.integrator = integrator or RateIntegrator()

        times = events.times
        busy = np.asarray(busy_time(events), dtype=float)
        if busy.shape != times.shape:
            raise ValueError("Busy-time policy must return one value per event")
        # gap k runs from the end of event k-1's busy window (x0 for k=0) to event k
        self.event_tlast = np.concatenate([[events.start], times[:-1]]) if times.size else np.zeros(0)
        gap_starts = np.concatenate([[events.start], times + busy])
        gap_ends = times
        gap_tlast = np.concatenate([[events.start], times])
        if events.end is not None:
            gap_ends = np.concatenate([times, [events.end]])
        else:
            gap_starts = gap_starts[:-1]
            gap_tlast = gap_tlast[:-1]
        self.gap_starts = gap_starts
        self.gap_ends = gap_ends
        self.gap_tlast = gap_tlast

    @property
    def n_events(self) -> int:
        return self.events.n_events

    @property
    def n_params(self) -> int:
        return self.spec.n_params

    @property
    def exposure(self) -> float:
        return float(np.sum(self.gap_ends - self.gap_starts))

    def intensity_at_events(self, theta: np.ndarray) -> np.ndarray:
        return self.spec.rate(theta, self.events.times, self.event_tlast, self.covariate)

    def gap_integrals(self, theta: np.ndarray) -> np.ndarray:
        return self.integrator.intervals(
            self.spec, theta, self.gap_starts, self.gap_ends, self.gap_tlast, self.covariate
        )

    def rescaled_interarrivals(self, theta: np.ndarray) -> np.ndarray:
        """Compensator increment from the end of each busy window to the next event."""
        return self.gap_integrals(theta)[: self.n_events]

    def negative_log_likelihood(self, theta: np.ndarray) -> float:
        theta = np.asarray(theta, dtype=float)
        lam = self.intensity_at_events(theta)
        bad = int(np.count_nonzero(~(lam > 0)))
        if bad:
            raise NonPositiveRateError(
                f"Intensity is non-positive at {bad} of {lam.size} event times", count=bad
            )
        value = -float(np.sum(np.log(lam))) + float(np.sum(self.gap_integrals(theta)))
        if not np.isfinite(value):
            raise NonPositiveRateError(f"Negative log-likelihood is not finite ({value})", count=0)
        return value

    def objective(self, theta: np.ndarray) -> float:
        try:
            return self.negative_log_likelihood(theta)
        except NonPositiveRateError as exc:
            return PENALTY * (1.0 + exc.count)

    __call__ = objective


__all__ = [
    "PENALTY",
    "BusyTimePolicy",
    "active_duration_busy_time",
    "no_busy_time",
    "ScaledBusyTime",
    "LikelihoodEngine",
]
