# tests/conftest.py
import os
import sys

import numpy as np
import pytest

# pytest's pythonpath setting covers normal runs; keep direct invocations working too
SRC = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir, "src"))
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from storm_nhpp.events import EventSeries  # noqa: E402
from storm_nhpp.rate_spec import RateSpecification  # noqa: E402
from storm_nhpp.rate_terms import Constant, SingleSinusoid  # noqa: E402


@pytest.fixture
def unit_events():
    """Five events one year apart with no busy time, observed from x0 = 0."""
    return EventSeries([1.0, 2.0, 3.0, 4.0, 5.0], np.zeros(5), start=0.0)


@pytest.fixture
def busy_events():
    """Events with non-zero active windows and a known observation end."""
    return EventSeries([0.5, 1.2, 2.0], [0.1, 0.2, 0.05], start=0.0, end=3.0)


@pytest.fixture
def seasonal_events():
    times = np.array([0.1, 0.35, 0.6, 0.9, 1.2, 1.5, 1.8, 2.3, 2.6, 2.95])
    return EventSeries(times, np.full(times.size, 0.01), start=0.0, end=3.0)


@pytest.fixture
def constant_spec():
    return RateSpecification([Constant()])


@pytest.fixture
def seasonal_spec():
    return RateSpecification([Constant(), SingleSinusoid()])
