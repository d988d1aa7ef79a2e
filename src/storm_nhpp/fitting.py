"""
Maximum-likelihood fitting of a rate specification to a storm event series.

Multi-parameter fits run derivative-free passes first to find a good basin on
the (possibly non-smooth, floor-clipped) likelihood surface, then a
gradient-based pass to polish the answer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import OptimizeResult, minimize

from .events import EventSeries
from .likelihood import PENALTY, BusyTimePolicy, LikelihoodEngine, active_duration_busy_time
from .rate_spec import RateSpecification
from .rate_terms import Covariate

if TYPE_CHECKING:
    from .uncertainty import UncertaintyEstimate


logger = logging.getLogger(__name__)

CONVERGED = 0
ITERATION_LIMIT = 1
NONPOSITIVE_RATE = 10
OPTIMIZER_FAILURE = 52

DERIVATIVE_FREE_METHOD = "Nelder-Mead"
GRADIENT_METHOD = "L-BFGS-B"
BOUNDED_METHODS = frozenset({"Nelder-Mead", "L-BFGS-B", "Powell", "TNC", "SLSQP", "trust-constr"})


def default_passes(n_params: int) -> Tuple[str, ...]:
    if n_params <= 1:
        return (GRADIENT_METHOD,)
    return (DERIVATIVE_FREE_METHOD, DERIVATIVE_FREE_METHOD, GRADIENT_METHOD)


@dataclass
class FitOptions:
    passes: Optional[Tuple[str, ...]] = None
    maxiter: int = 5000
    enforce_nonnegative_theta: bool = False

    def resolve_passes(self, n_params: int) -> Tuple[str, ...]:
        passes = tuple(self.passes) if self.passes else default_passes(n_params)
        if self.maxiter < 1:
            raise ValueError(f"maxiter must be positive, got {self.maxiter}")
        return passes


@dataclass
class PassRecord:
    method: str
    nll: float
    status: int
    success: bool
    nit: int
    nfev: int
    message: str


@dataclass
class FitResult:
    spec: RateSpecification
    theta: np.ndarray
    nll: float
    convergence: int
    n_events: int
    message: str = ""
    passes: List[PassRecord] = field(default_factory=list)
    likelihood: Optional[LikelihoodEngine] = field(default=None, repr=False)
    uncertainty: Optional["UncertaintyEstimate"] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def n_params(self) -> int:
        return int(np.size(self.theta))

    @property
    def converged(self) -> bool:
        return self.convergence == CONVERGED

    @property
    def equation(self) -> str:
        return self.spec.equation()

    @property
    def params(self) -> Dict[str, float]:
        return dict(zip(self.spec.param_names, (float(v) for v in self.theta)))

    @property
    def events(self) -> Optional[EventSeries]:
        return None if self.likelihood is None else self.likelihood.events

    @property
    def start(self) -> Optional[float]:
        events = self.events
        return None if events is None else events.start


def starting_theta(spec: RateSpecification, prior_fit: Optional[FitResult] = None) -> np.ndarray:
    """Default start vector, with any term shared with ``prior_fit`` taken from it."""
    theta = spec.initial_theta()
    if prior_fit is None:
        return theta
    previous = prior_fit.spec.split(prior_fit.theta)
    for term, sl in zip(spec.terms, spec.slices):
        values = previous.get(term.name)
        if values is not None and values.size == term.n_params:
            theta[sl] = values
    return theta


def _status_code(method: str, res: OptimizeResult) -> int:
    if res.success and np.isfinite(res.fun):
        return CONVERGED
    if res.status == 1 or (method == DERIVATIVE_FREE_METHOD and res.status == 2):
        return ITERATION_LIMIT
    return OPTIMIZER_FAILURE


def _run_pass(
    objective,
    z0: np.ndarray,
    method: str,
    maxiter: int,
    bounds: Optional[List[Tuple[float, Optional[float]]]],
) -> OptimizeResult:
    options: Dict[str, object] = {"maxiter": maxiter}
    if method == DERIVATIVE_FREE_METHOD:
        options["maxfev"] = maxiter
    return minimize(
        objective,
        x0=z0,
        method=method,
        bounds=bounds if method in BOUNDED_METHODS else None,
        options=options,
    )


def fit_rate_model(
    events: EventSeries,
    spec: RateSpecification,
    options: Optional[FitOptions] = None,
    covariate: Optional[Covariate] = None,
    busy_time: BusyTimePolicy = active_duration_busy_time,
    prior_fit: Optional[FitResult] = None,
    start: Optional[Sequence[float]] = None,
) -> FitResult:
    """Fit ``spec`` to ``events`` by minimising the busy-time corrected NLL.

    ``start`` overrides the starting vector outright; otherwise the terms'
    defaults are used, warm-started from ``prior_fit`` where term names match.
    The optimiser works on theta / scale so every parameter has a comparable
    magnitude; the objective itself is unchanged.
    """
    options = options or FitOptions()
    engine = LikelihoodEngine(events, spec, covariate=covariate, busy_time=busy_time)
    passes = options.resolve_passes(spec.n_params)
    scale = spec.theta_scale()
    theta0 = starting_theta(spec, prior_fit) if start is None else np.asarray(start, dtype=float)
    if theta0.size != spec.n_params:
        raise ValueError(f"Start vector has {theta0.size} values, '{spec.name}' needs {spec.n_params}")

    bounds = None
    if options.enforce_nonnegative_theta:
        bounds = [(0.0, None)] * spec.n_params
        theta0 = np.abs(theta0)

    def scaled_objective(z: np.ndarray) -> float:
        theta = np.asarray(z, dtype=float) * scale
        if options.enforce_nonnegative_theta and np.any(theta < 0):
            return PENALTY
        return engine.objective(theta)

    z = theta0 / scale
    records: List[PassRecord] = []
    status = OPTIMIZER_FAILURE
    message = ""
    for method in passes:
        res = _run_pass(scaled_objective, z, method, options.maxiter, bounds)
        if np.all(np.isfinite(res.x)):
            z = np.asarray(res.x, dtype=float)
        status = _status_code(method, res)
        message = str(res.message)
        records.append(
            PassRecord(
                method=method,
                nll=float(res.fun),
                status=int(res.status),
                success=bool(res.success),
                nit=int(getattr(res, "nit", 0) or 0),
                nfev=int(getattr(res, "nfev", 0) or 0),
                message=message,
            )
        )
        logger.debug("%s pass %s: nll=%.6g status=%s", spec.name, method, res.fun, res.status)

    theta = z * scale
    nll = scaled_objective(z)
    if nll >= PENALTY:
        status = NONPOSITIVE_RATE
        message = "intensity is non-positive at an observed event for the final parameters"

    result = FitResult(
        spec=spec,
        theta=theta,
        nll=float(nll),
        convergence=status,
        n_events=events.n_events,
        message=message,
        passes=records,
        likelihood=engine,
    )
    if result.converged:
        logger.info("Fitted %s: nll=%.4f theta=%s", spec.name, nll, np.round(theta, 5).tolist())
    else:
        logger.warning("Fit of %s did not converge (code %d): %s", spec.name, status, message)
    return result


__all__ = [
    "CONVERGED",
    "ITERATION_LIMIT",
    "NONPOSITIVE_RATE",
    "OPTIMIZER_FAILURE",
    "default_passes",
    "FitOptions",
    "PassRecord",
    "FitResult",
    "starting_theta",
    "fit_rate_model",
]
