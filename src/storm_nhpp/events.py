"""
Storm event series: ordered start times with per-event active (busy) durations.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd


HOURS_PER_YEAR = 365.25 * 24.0


def _frozen_array(values: Sequence[float]) -> np.ndarray:
    arr = np.array(values, dtype=float).reshape(-1)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class EventSeries:
    """Event start times (decimal years) and the busy window following each event.

    ``start`` is the observation start x0 and ``end`` the optional end of
    observation T. The non-overtaking invariant ``t_i + d_i <= t_{i+1}`` is
    the producer's responsibility and is not checked here; see
    :meth:`overtaking_violations`.
    """

    times: np.ndarray
    active_durations: np.ndarray
    start: float
    end: Optional[float] = None

    def __post_init__(self) -> None:
        times = _frozen_array(self.times)
        durations = _frozen_array(self.active_durations)
        if times.shape != durations.shape:
            raise ValueError(
                f"times ({times.size}) and active_durations ({durations.size}) differ in length"
            )
        if not np.all(np.isfinite(times)) or not np.all(np.isfinite(durations)):
            raise ValueError("Event times and durations must be finite.")
        if np.any(np.diff(times) <= 0):
            raise ValueError("Event times must be strictly increasing.")
        if np.any(durations < 0):
            raise ValueError("Active durations must be non-negative.")
        start = float(self.start)
        if times.size and start > times[0]:
            raise ValueError(f"Observation start {start} is after the first event {times[0]}")
        end = None if self.end is None else float(self.end)
        if end is not None and times.size and end < times[-1]:
            raise ValueError(f"Observation end {end} is before the last event {times[-1]}")
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "active_durations", durations)
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @property
    def n_events(self) -> int:
        return int(self.times.size)

    def __len__(self) -> int:
        return self.n_events

    def inter_event_times(self) -> np.ndarray:
        return np.diff(np.concatenate([[self.start], self.times]))

    def overtaking_violations(self) -> np.ndarray:
        """Indices i where event i's active window runs past event i+1."""
        if self.n_events < 2:
            return np.array([], dtype=int)
        ends = self.times[:-1] + self.active_durations[:-1]
        return np.flatnonzero(ends > self.times[1:])

    def annual_counts(self) -> pd.Series:
        years = np.floor(self.times).astype(int)
        first = int(np.floor(self.start))
        last = int(np.floor(self.times[-1])) if self.n_events else first
        if self.end is not None:
            # end is exclusive: a record ending on 2016.0 covers years up to 2015
            last = max(last, int(np.ceil(self.end)) - 1)
        counts = pd.Series(years).value_counts()
        return counts.reindex(range(first, last + 1), fill_value=0).rename("events").sort_index()

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"time": self.times, "active_duration": self.active_durations})

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        time_col: str = "time",
        duration_col: str = "active_duration",
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> "EventSeries":
        df = df.sort_values(time_col)
        times = df[time_col].to_numpy(dtype=float)
        if start is None:
            start = float(times[0]) if times.size else 0.0
        return cls(times, df[duration_col].to_numpy(dtype=float), start=start, end=end)


def to_decimal_year(stamps: pd.Series) -> np.ndarray:
    """Convert timestamps to decimal years (e.g. 2001-07-02 12:00 -> 2001.5)."""
    stamps = pd.to_datetime(stamps, utc=True).dt.tz_convert(None)
    year = stamps.dt.year
    year_start = pd.to_datetime(year.astype(str) + "-01-01")
    year_end = pd.to_datetime((year + 1).astype(str) + "-01-01")
    fraction = (stamps - year_start) / (year_end - year_start)
    return (year + fraction).to_numpy(dtype=float)


def active_duration_years(
    duration_hours: np.ndarray,
    gap_hours: float = 0.0,
    offset_hours: float = 0.0,
) -> np.ndarray:
    """Busy window per event: storm duration plus the inter-event gap, in years."""
    hours = np.asarray(duration_hours, dtype=float) + gap_hours - offset_hours
    if np.any(hours < 0):
        raise ValueError("duration + gap - offset must be non-negative for every event")
    return hours / HOURS_PER_YEAR


def load_event_table(
    path: Path,
    time_col: str = "startyear",
    duration_col: str = "duration",
    gap_hours: float = 0.0,
    offset_hours: float = 0.0,
    start: Optional[float] = None,
    end: Optional[float] = None,
) -> EventSeries:
    """Load a storm event CSV produced by the preprocessing pipeline.

    ``time_col`` may hold decimal years or timestamps; ``duration_col`` holds
    storm durations in hours.
    """
    df = pd.read_csv(path)
    missing = {time_col, duration_col} - set(df.columns)
    if missing:
        raise ValueError(f"Event table {path} is missing columns: {sorted(missing)}")
    df = df.dropna(subset=[time_col, duration_col])
    if pd.api.types.is_numeric_dtype(df[time_col]):
        times = df[time_col].to_numpy(dtype=float)
    else:
        times = to_decimal_year(df[time_col])
    order = np.argsort(times, kind="mergesort")
    times = times[order]
    durations = active_duration_years(
        df[duration_col].to_numpy(dtype=float)[order],
        gap_hours=gap_hours,
        offset_hours=offset_hours,
    )
    if start is None:
        start = float(np.floor(times[0])) if times.size else 0.0
    return EventSeries(times, durations, start=start, end=end)


__all__ = [
    "HOURS_PER_YEAR",
    "EventSeries",
    "to_decimal_year",
    "active_duration_years",
    "load_event_table",
]
