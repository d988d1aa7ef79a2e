import warnings

import numpy as np
import pytest

from storm_nhpp.errors import HessianRepairWarning
from storm_nhpp.fitting import FitResult, fit_rate_model
from storm_nhpp.likelihood import LikelihoodEngine
from storm_nhpp.uncertainty import (
    attach_uncertainty,
    estimate_uncertainty,
    nearest_positive_definite,
)


def test_constant_rate_standard_error(unit_events, constant_spec):
    fit = fit_rate_model(unit_events, constant_spec, start=[0.5])
    with warnings.catch_warnings():
        warnings.simplefilter("error", HessianRepairWarning)
        estimate = attach_uncertainty(fit)
    rate = fit.theta[0]
    assert fit.uncertainty is estimate
    assert not estimate.repaired
    assert estimate.clean
    assert estimate.hessian[0, 0] == pytest.approx(5.0 / rate**2, rel=1e-4)
    assert estimate.std_errors[0] == pytest.approx(np.sqrt(rate / 5.0), rel=1e-3)
    assert estimate.std_errors[0] == pytest.approx(np.sqrt(1 / 5), rel=1e-2)


def test_non_positive_definite_hessian_is_repaired_and_flagged(seasonal_events, seasonal_spec):
    # with zero amplitude the phase is unidentified, so the Hessian is singular or indefinite
    theta = np.array([3.0, 0.0, 0.25])
    engine = LikelihoodEngine(seasonal_events, seasonal_spec)
    fit = FitResult(seasonal_spec, theta, engine.objective(theta), 0, seasonal_events.n_events, likelihood=engine)
    with pytest.warns(HessianRepairWarning):
        estimate = estimate_uncertainty(fit)
    assert estimate.repaired
    assert not estimate.clean
    assert np.all(np.isfinite(estimate.covariance))
    assert np.all(estimate.std_errors >= 0)
    np.testing.assert_array_equal(fit.theta, [3.0, 0.0, 0.25])


def test_nearest_positive_definite_clips_eigenvalues():
    matrix = np.array([[1.0, 2.0], [2.0, 1.0]])
    repaired = nearest_positive_definite(matrix)
    np.linalg.cholesky(repaired)
    np.testing.assert_allclose(repaired, repaired.T)
    assert np.min(np.linalg.eigvalsh(repaired)) > 0


def test_requires_likelihood(constant_spec):
    fit = FitResult(constant_spec, np.array([1.0]), 5.0, 0, 5)
    with pytest.raises(ValueError):
        estimate_uncertainty(fit)
