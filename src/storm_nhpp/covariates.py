"""
Time-indexed covariate lookup (e.g. an annual ENSO/SOI index) for rate terms.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd


ArrayLike = Union[float, np.ndarray]


@dataclass(frozen=True, eq=False)
class CovariateLookup:
    """Piecewise-constant lookup: the value at ``times[i]`` holds until ``times[i+1]``.

    With ``periodic=True`` a time outside ``window`` is wrapped back into it,
    so a fixed historical record (e.g. 1985-2015) is looped over. With
    ``periodic=False`` times outside the record take the nearest edge value.
    """

    times: np.ndarray
    values: np.ndarray
    periodic: bool = False
    window: Optional[Tuple[float, float]] = None

    def __post_init__(self) -> None:
        times = np.asarray(self.times, dtype=float).reshape(-1)
        values = np.asarray(self.values, dtype=float).reshape(-1)
        if times.size == 0 or times.shape != values.shape:
            raise ValueError("Covariate times and values must be non-empty and of equal length.")
        order = np.argsort(times, kind="mergesort")
        times, values = times[order], values[order]
        if np.any(np.diff(times) <= 0):
            raise ValueError("Covariate times must be unique.")
        window = self.window
        if window is None:
            step = float(np.median(np.diff(times))) if times.size > 1 else 1.0
            window = (float(times[0]), float(times[-1]) + step)
        window = (float(window[0]), float(window[1]))
        if window[1] <= window[0]:
            raise ValueError(f"Covariate window {window} is empty.")
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "window", window)

    @property
    def extrapolation(self) -> str:
        return "periodic" if self.periodic else "hold"

    def with_periodic(self, periodic: bool, window: Optional[Tuple[float, float]] = None) -> "CovariateLookup":
        return replace(self, periodic=periodic, window=window if window is not None else self.window)

    def wrap(self, t: ArrayLike) -> np.ndarray:
        t = np.asarray(t, dtype=float)
        if not self.periodic:
            return t
        lo, hi = self.window
        return lo + np.mod(t - lo, hi - lo)

    def __call__(self, t: ArrayLike) -> np.ndarray:
        t = self.wrap(t)
        idx = np.searchsorted(self.times, t, side="right") - 1
        idx = np.clip(idx, 0, self.times.size - 1)
        return self.values[idx]

    @classmethod
    def from_series(
        cls,
        series: pd.Series,
        periodic: bool = False,
        window: Optional[Tuple[float, float]] = None,
    ) -> "CovariateLookup":
        series = series.dropna()
        return cls(series.index.to_numpy(dtype=float), series.to_numpy(dtype=float), periodic, window)


def load_covariate_table(
    path: Path,
    time_col: str = "year",
    value_col: str = "soi",
    periodic: bool = False,
    window: Optional[Tuple[float, float]] = None,
) -> CovariateLookup:
    df = pd.read_csv(path)
    missing = {time_col, value_col} - set(df.columns)
    if missing:
        raise ValueError(f"Covariate table {path} is missing columns: {sorted(missing)}")
    series = df.set_index(time_col)[value_col]
    return CovariateLookup.from_series(series, periodic=periodic, window=window)


__all__ = ["CovariateLookup", "load_covariate_table"]
