"""
Synthetic storm sequences drawn from an intensity function by inverting the
cumulative intensity one inter-event interval at a time.

After each event the next search starts at the end of that event's active
window, so the same "no new storm while one is active" rule used in fitting
holds for the simulated sequence.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Iterator, List, NamedTuple, Optional, Sequence, Union

import numpy as np

from .covariates import CovariateLookup
from .errors import SpecificationError
from .events import EventSeries
from .fitting import FitResult
from .integration import RateIntegrator
from .rate_spec import RateSpecification
from .rate_terms import Covariate


DurationSampler = Callable[[np.random.Generator], float]
DurationPolicy = Union[float, Sequence[float], DurationSampler]
Seed = Union[None, int, np.random.SeedSequence]


class SimulationState(Enum):
    AWAITING_DRAW = "awaiting_draw"
    HAVE_CANDIDATE_TIME = "have_candidate_time"
    EVENT_EMITTED = "event_emitted"
    HORIZON_EXCEEDED = "horizon_exceeded"


class SimulatedEvent(NamedTuple):
    time: float
    active_duration: float


def make_duration_sampler(duration: DurationPolicy) -> DurationSampler:
    """Fixed duration, resampling from empirical durations, or a custom ``rng -> float``."""
    if callable(duration):
        return duration
    if np.isscalar(duration):
        value = float(duration)
        if value < 0:
            raise ValueError(f"Active duration must be non-negative, got {value}")
        return lambda rng: value
    samples = np.asarray(duration, dtype=float).reshape(-1)
    if samples.size == 0 or np.any(samples < 0):
        raise ValueError("Empirical durations must be a non-empty set of non-negative values")
    return lambda rng: float(rng.choice(samples))


class EventSimulator:
    """Lazy, restartable event generator.

    Every ``iter()`` starts again from ``start`` with a fresh generator built
    from ``seed``: the same seed gives the same sequence, ``seed=None`` an
    independent one. A sequence ends (``HORIZON_EXCEEDED``) once the
    remaining intensity up to ``horizon`` cannot absorb the next
    unit-exponential draw.
    """

    def __init__(
        self,
        spec: RateSpecification,
        theta: Sequence[float],
        start: float,
        horizon: float,
        duration: DurationPolicy = 0.0,
        covariate: Optional[Covariate] = None,
        seed: Seed = None,
        integrator: Optional[RateIntegrator] = None,
    ) -> None:
        if horizon <= start:
            raise ValueError(f"Horizon {horizon} must be after start {start}")
        if spec.requires_covariate and covariate is None:
            raise SpecificationError(f"Specification '{spec.name}' needs a covariate lookup")
        spec.split(theta)
        self.spec = spec
        self.theta = np.asarray(theta, dtype=float)
        self.start = float(start)
        self.horizon = float(horizon)
        self.sample_duration = make_duration_sampler(duration)
        self.covariate = covariate
        self.seed = seed
        self.integrator = integrator or RateIntegrator()
        self.state = SimulationState.AWAITING_DRAW

    def __iter__(self) -> Iterator[SimulatedEvent]:
        rng = np.random.default_rng(self.seed)
        window_start = self.start
        tlast = self.start
        while True:
            self.state = SimulationState.AWAITING_DRAW
            target = rng.exponential()
            t_next = self.integrator.solve_upper(
                self.spec, self.theta, window_start, target, tlast, self.horizon, self.covariate
            )
            if t_next is None:
                self.state = SimulationState.HORIZON_EXCEEDED
                return
            self.state = SimulationState.HAVE_CANDIDATE_TIME
            active = float(self.sample_duration(rng))
            self.state = SimulationState.EVENT_EMITTED
            yield SimulatedEvent(t_next, active)
            tlast = t_next
            window_start = t_next + active
            if window_start >= self.horizon:
                self.state = SimulationState.HORIZON_EXCEEDED
                return

    def series(self) -> EventSeries:
        events = list(self)
        return EventSeries(
            [e.time for e in events],
            [e.active_duration for e in events],
            start=self.start,
            end=self.horizon,
        )


def simulate_series(
    spec: RateSpecification,
    theta: Sequence[float],
    start: float,
    horizon: float,
    duration: DurationPolicy = 0.0,
    covariate: Optional[Covariate] = None,
    seed: Seed = None,
) -> EventSeries:
    return EventSimulator(spec, theta, start, horizon, duration, covariate, seed).series()


def simulate_from_fit(
    fit: FitResult,
    horizon: float,
    n_sims: int = 1,
    duration: Optional[DurationPolicy] = None,
    start: Optional[float] = None,
    covariate: Optional[Covariate] = None,
    seed: Optional[int] = None,
    periodic_covariate: Optional[bool] = None,
) -> List[EventSeries]:
    """Independent sequences from a fitted model.

    Durations default to resampling the fitted events' active durations and
    the covariate to the one used in fitting. ``periodic_covariate`` switches
    a :class:`CovariateLookup` between looping over its window and holding
    its edge values for the simulation only; ``None`` keeps it as it is.
    """
    engine = fit.likelihood
    if start is None:
        if engine is None:
            raise ValueError("start is required for a fit without a likelihood")
        start = engine.events.start
    if duration is None:
        if engine is None or engine.n_events == 0:
            duration = 0.0
        else:
            duration = engine.events.active_durations
    if covariate is None and engine is not None:
        covariate = engine.covariate
    if periodic_covariate is not None and isinstance(covariate, CovariateLookup):
        covariate = covariate.with_periodic(periodic_covariate)
    seeds = np.random.SeedSequence(seed).spawn(n_sims)
    return [
        simulate_series(fit.spec, fit.theta, start, horizon, duration, covariate, child)
        for child in seeds
    ]


__all__ = [
    "SimulationState",
    "SimulatedEvent",
    "make_duration_sampler",
    "EventSimulator",
    "simulate_series",
    "simulate_from_fit",
]
