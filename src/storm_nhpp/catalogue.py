"""
Candidate rate specifications: every combination of an annual, a seasonal and a
clustering term family.
"""

from __future__ import annotations

from itertools import product
from typing import Callable, Dict, List, Optional, Sequence

from .errors import SpecificationError
from .rate_spec import RateSpecification
from .rate_terms import (
    Constant,
    CovariateLinear,
    DoubleSinusoid,
    ExponentialCluster,
    LinearTrend,
    RateTerm,
    Sawtooth,
    SingleSinusoid,
)


TermFactory = Callable[[float], RateTerm]

ANNUAL_TERMS: Dict[str, TermFactory] = {
    "constant": lambda origin: Constant(),
    "trend": lambda origin: LinearTrend(origin=origin),
    "covariate": lambda origin: CovariateLinear(),
}

SEASONAL_TERMS: Dict[str, Optional[TermFactory]] = {
    "none": None,
    "sinusoid": lambda origin: SingleSinusoid(),
    "double_sinusoid": lambda origin: DoubleSinusoid(),
    "sawtooth": lambda origin: Sawtooth(),
}

CLUSTER_TERMS: Dict[str, Optional[TermFactory]] = {
    "none": None,
    "exponential": lambda origin: ExponentialCluster(),
}


def _pick(family: Dict[str, Optional[TermFactory]], names: Optional[Sequence[str]], what: str) -> List[str]:
    if names is None:
        return list(family)
    unknown = [n for n in names if n not in family]
    if unknown:
        raise SpecificationError(f"Unknown {what} term(s) {unknown}; choose from {list(family)}")
    return list(names)


def candidate_specifications(
    annual: Optional[Sequence[str]] = None,
    seasonal: Optional[Sequence[str]] = None,
    cluster: Optional[Sequence[str]] = None,
    minimum_rate: float = 0.0,
    trend_origin: float = 0.0,
) -> List[RateSpecification]:
    """Cartesian product of the chosen families (all of each family by default).

    ``"none"`` leaves that component out. Specifications are named by the
    chosen family names joined with ``+``, e.g. ``"trend+sinusoid"``.
    """
    specs: List[RateSpecification] = []
    for a, s, c in product(
        _pick(ANNUAL_TERMS, annual, "annual"),
        _pick(SEASONAL_TERMS, seasonal, "seasonal"),
        _pick(CLUSTER_TERMS, cluster, "cluster"),
    ):
        chosen = [(a, ANNUAL_TERMS[a]), (s, SEASONAL_TERMS[s]), (c, CLUSTER_TERMS[c])]
        chosen = [(name, factory) for name, factory in chosen if factory is not None]
        specs.append(
            RateSpecification(
                [factory(trend_origin) for _, factory in chosen],
                minimum_rate=minimum_rate,
                name="+".join(name for name, _ in chosen),
            )
        )
    return specs


__all__ = ["ANNUAL_TERMS", "SEASONAL_TERMS", "CLUSTER_TERMS", "candidate_specifications"]
