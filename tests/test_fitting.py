import numpy as np
import pytest

from storm_nhpp.events import EventSeries
from storm_nhpp.fitting import (
    CONVERGED,
    ITERATION_LIMIT,
    NONPOSITIVE_RATE,
    FitOptions,
    default_passes,
    fit_rate_model,
    starting_theta,
)
from storm_nhpp.rate_spec import RateSpecification
from storm_nhpp.rate_terms import Constant, ExponentialCluster, LinearTrend, SingleSinusoid


def test_pass_schedule():
    assert default_passes(1) == ("L-BFGS-B",)
    assert default_passes(3) == ("Nelder-Mead", "Nelder-Mead", "L-BFGS-B")
    assert FitOptions(passes=("Powell",)).resolve_passes(4) == ("Powell",)
    with pytest.raises(ValueError):
        FitOptions(maxiter=0).resolve_passes(1)


def test_constant_rate_mle_is_count_over_exposure(unit_events, constant_spec):
    fit = fit_rate_model(unit_events, constant_spec, start=[0.5])
    assert fit.convergence == CONVERGED
    assert fit.converged
    assert fit.theta[0] == pytest.approx(1.0, abs=1e-3)
    assert fit.nll == pytest.approx(5.0, abs=1e-4)
    assert [p.method for p in fit.passes] == ["L-BFGS-B"]
    assert fit.params == {"constant.rate": pytest.approx(1.0, abs=1e-3)}


def test_constant_rate_mle_with_busy_time(busy_events, constant_spec):
    fit = fit_rate_model(busy_events, constant_spec)
    assert fit.theta[0] == pytest.approx(3 / 2.65, rel=1e-3)


def test_multi_parameter_fit_runs_all_passes(seasonal_events, seasonal_spec):
    initial = fit_rate_model(seasonal_events, seasonal_spec, options=FitOptions(passes=("Nelder-Mead",), maxiter=1))
    fit = fit_rate_model(seasonal_events, seasonal_spec)
    assert [p.method for p in fit.passes] == ["Nelder-Mead", "Nelder-Mead", "L-BFGS-B"]
    assert fit.n_params == 3
    assert np.isfinite(fit.nll)
    assert fit.nll <= initial.nll
    assert fit.equation == seasonal_spec.equation()


def test_iteration_limit_is_a_status_not_an_error(seasonal_events, seasonal_spec):
    fit = fit_rate_model(seasonal_events, seasonal_spec, options=FitOptions(passes=("Nelder-Mead",), maxiter=2))
    assert fit.convergence == ITERATION_LIMIT
    assert not fit.converged
    assert np.isfinite(fit.nll)


def test_penalised_final_answer_is_flagged():
    events = EventSeries([0.5, 2.0], [0.0, 0.0], start=0.0)
    spec = RateSpecification([LinearTrend()])
    fit = fit_rate_model(events, spec, options=FitOptions(passes=("Nelder-Mead",), maxiter=1), start=[1.0, -1.0])
    assert fit.convergence == NONPOSITIVE_RATE
    assert np.isfinite(fit.nll)


def test_nonnegative_theta_is_enforced():
    events = EventSeries([0.1, 0.2, 0.3, 0.4, 0.5, 3.0], np.zeros(6), start=0.0, end=4.0)
    spec = RateSpecification([LinearTrend()])
    free = fit_rate_model(events, spec)
    bounded = fit_rate_model(events, spec, options=FitOptions(enforce_nonnegative_theta=True))
    assert free.theta[1] < 0
    assert np.all(bounded.theta >= 0)


def test_prior_fit_seeds_matching_terms(unit_events, constant_spec):
    prior = fit_rate_model(unit_events, constant_spec, start=[0.5])
    extended = RateSpecification([Constant(), ExponentialCluster()])
    theta0 = starting_theta(extended, prior)
    assert theta0[0] == pytest.approx(prior.theta[0])
    np.testing.assert_array_equal(theta0[1:], ExponentialCluster().start)
    np.testing.assert_array_equal(starting_theta(extended), extended.initial_theta())


def test_fit_does_not_mutate_specification(seasonal_events):
    spec = RateSpecification([Constant(), SingleSinusoid()])
    before = spec.initial_theta()
    fit_rate_model(seasonal_events, spec)
    np.testing.assert_array_equal(spec.initial_theta(), before)


def test_wrong_start_length(unit_events, constant_spec):
    with pytest.raises(ValueError):
        fit_rate_model(unit_events, constant_spec, start=[1.0, 2.0])
