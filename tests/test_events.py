import numpy as np
import pandas as pd
import pytest

from storm_nhpp.covariates import CovariateLookup, load_covariate_table
from storm_nhpp.diagnostics import poisson_dispersion
from storm_nhpp.events import (
    HOURS_PER_YEAR,
    EventSeries,
    active_duration_years,
    load_event_table,
    to_decimal_year,
)


def test_event_series_is_read_only(unit_events):
    with pytest.raises(ValueError):
        unit_events.times[0] = 10.0


@pytest.mark.parametrize(
    "times, durations, start, end",
    [
        ([1.0, 1.0], [0.0, 0.0], 0.0, None),
        ([2.0, 1.0], [0.0, 0.0], 0.0, None),
        ([1.0, 2.0], [0.0], 0.0, None),
        ([1.0, 2.0], [-0.1, 0.0], 0.0, None),
        ([1.0, 2.0], [0.0, 0.0], 1.5, None),
        ([1.0, 2.0], [0.0, 0.0], 0.0, 1.5),
        ([1.0, np.nan], [0.0, 0.0], 0.0, None),
    ],
)
def test_event_series_rejects_invalid_input(times, durations, start, end):
    with pytest.raises(ValueError):
        EventSeries(times, durations, start=start, end=end)


def test_overtaking_is_reported_not_rejected():
    events = EventSeries([1.0, 2.0, 3.0], [1.5, 0.0, 0.0], start=0.0)
    assert events.overtaking_violations().tolist() == [0]


def test_annual_counts_include_empty_years():
    events = EventSeries([2000.2, 2000.7, 2002.1], [0.0, 0.0, 0.0], start=2000.0, end=2003.5)
    counts = events.annual_counts()
    assert counts.index.tolist() == [2000, 2001, 2002, 2003]
    assert counts.tolist() == [2, 0, 1, 0]


def test_annual_counts_end_on_year_boundary_is_exclusive():
    events = EventSeries([2000.2, 2000.7, 2002.1], [0.0, 0.0, 0.0], start=2000.0, end=2003.0)
    assert events.annual_counts().index.tolist() == [2000, 2001, 2002]

    regular = EventSeries(np.arange(1985, 2016) + 0.5, np.zeros(31), start=1985.0, end=2016.0)
    counts = regular.annual_counts()
    assert counts.index[0] == 1985 and counts.index[-1] == 2015
    assert (counts == 1).all()
    assert poisson_dispersion(counts.to_numpy())["dispersion_index"] == 0.0


def test_annual_counts_keep_event_at_end():
    events = EventSeries([2000.5, 2003.0], [0.0, 0.0], start=2000.0, end=2003.0)
    counts = events.annual_counts()
    assert counts.index.tolist() == [2000, 2001, 2002, 2003]
    assert counts.sum() == 2


def test_frame_round_trip(busy_events):
    frame = busy_events.to_frame()
    again = EventSeries.from_frame(frame, start=0.0, end=3.0)
    np.testing.assert_array_equal(again.times, busy_events.times)
    np.testing.assert_array_equal(again.active_durations, busy_events.active_durations)


def test_to_decimal_year_midyear():
    out = to_decimal_year(pd.Series(["2001-07-02 12:00"]))
    assert out[0] == pytest.approx(2001.5)


def test_active_duration_adds_gap_and_subtracts_offset():
    years = active_duration_years(np.array([24.0]), gap_hours=12.0, offset_hours=6.0)
    assert years[0] == pytest.approx(30.0 / HOURS_PER_YEAR)
    with pytest.raises(ValueError):
        active_duration_years(np.array([2.0]), offset_hours=6.0)


def test_load_event_table_sorts_and_converts(tmp_path):
    path = tmp_path / "storms.csv"
    pd.DataFrame(
        {
            "startyear": [1990.75, 1990.25, 1991.5],
            "duration": [48.0, 24.0, 12.0],
        }
    ).to_csv(path, index=False)
    events = load_event_table(path, gap_hours=24.0, end=1992.0)
    assert events.times.tolist() == [1990.25, 1990.75, 1991.5]
    assert events.start == 1990.0
    assert events.active_durations[0] == pytest.approx(48.0 / HOURS_PER_YEAR)
    assert events.end == 1992.0


def test_load_event_table_missing_column(tmp_path):
    path = tmp_path / "storms.csv"
    pd.DataFrame({"startyear": [1990.5]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="duration"):
        load_event_table(path)


class TestCovariateLookup:
    @pytest.fixture
    def soi(self):
        years = np.arange(1985, 2016)
        return CovariateLookup(years, years - 1985.0, periodic=True, window=(1985, 2016))

    def test_piecewise_constant_within_year(self, soi):
        assert soi(1990.0) == 5.0
        assert soi(1990.99) == 5.0

    def test_periodic_wraps_into_window(self, soi):
        assert soi.extrapolation == "periodic"
        assert soi(2016.5) == 0.0
        assert soi(1984.5) == 30.0

    def test_hold_keeps_edge_values(self, soi):
        held = soi.with_periodic(False)
        assert held.extrapolation == "hold"
        assert held.window == soi.window
        assert held(2030.0) == 30.0
        assert held(1900.0) == 0.0

    def test_vectorised(self, soi):
        out = soi(np.array([[1985.5, 2000.2], [2017.0, 1986.0]]))
        assert out.shape == (2, 2)
        np.testing.assert_array_equal(out, [[0.0, 15.0], [1.0, 1.0]])

    def test_load_from_csv(self, tmp_path):
        path = tmp_path / "soi.csv"
        pd.DataFrame({"year": [2000, 2001, 2002], "soi": [0.5, -1.0, 2.0]}).to_csv(path, index=False)
        lookup = load_covariate_table(path)
        assert lookup.periodic is False
        assert lookup.window == (2000.0, 2003.0)
        assert lookup(2001.4) == -1.0
