"""Class breaks and palette lookup for choropleth layers."""
from __future__ import annotations

import math
from bisect import bisect_left
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from riskmap.settings import (
    COLOR_RAMPS,
    DEFAULT_CLASS_COUNT,
    DEFAULT_METRIC,
    JENKS_MIN_DISTINCT,
    NO_DATA_COLOR,
    PALETTE_5,
    RISK_BINS,
    RISK_COLORS,
)


def _as_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, (bool, str)):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _finite(values: Optional[Sequence[object]]) -> np.ndarray:
    numbers = [number for number in (_as_float(value) for value in values or []) if number is not None]
    return np.sort(np.asarray(numbers, dtype=float))


def quantile_breaks(values: Sequence[object], k: int = DEFAULT_CLASS_COUNT) -> List[float]:
    """Equal-frequency thresholds at positions ``0, 1/k, ..., 1`` (linear interpolation)."""
    data = _finite(values)
    if data.size == 0 or k < 1:
        return []
    breaks = np.quantile(data, np.linspace(0.0, 1.0, k + 1))
    breaks = np.maximum.accumulate(breaks)
    breaks[0], breaks[-1] = data[0], data[-1]
    return [float(value) for value in breaks]


def jenks_breaks(values: Sequence[object], k: int = DEFAULT_CLASS_COUNT) -> List[float]:
    """Fisher-Jenks optimal partition of the sorted values into ``k`` classes.

    Returns ``[min, upper_1, ..., upper_{k-1}, max]`` where ``upper_i`` is the
    largest value of class ``i``. Falls back to quantile breaks when fewer than
    ``k`` finite values are available.
    """
    data = _finite(values)
    n = data.size
    if k < 1 or n < k:
        return quantile_breaks(values, k)

    sums = np.concatenate(([0.0], np.cumsum(data)))
    squares = np.concatenate(([0.0], np.cumsum(data * data)))
    cost = np.full((k + 1, n + 1), np.inf)
    cost[0, 0] = 0.0
    start = np.zeros((k + 1, n + 1), dtype=int)

    for classes in range(1, k + 1):
        for end in range(classes, n - (k - classes) + 1):
            # the last class covers data[begin:end]
            begin = np.arange(classes - 1, end)
            size = end - begin
            segment = (squares[end] - squares[begin]) - (sums[end] - sums[begin]) ** 2 / size
            total = cost[classes - 1, begin] + segment
            best = int(np.argmin(total))
            cost[classes, end] = total[best]
            start[classes, end] = begin[best]

    breaks = [float(data[-1])]
    end = n
    for classes in range(k, 1, -1):
        begin = start[classes, end]
        breaks.append(float(data[begin - 1]))
        end = begin
    breaks.append(float(data[0]))
    breaks.reverse()
    return breaks


def choose_breaks(values: Sequence[object], k: int = DEFAULT_CLASS_COUNT) -> List[float]:
    data = _finite(values)
    if np.unique(data).size >= JENKS_MIN_DISTINCT:
        return jenks_breaks(values, k)
    return quantile_breaks(values, k)


def class_index_of(value: object, breaks: Sequence[float]) -> int:
    """Class of ``value`` for intervals ``[b0, b1], (b1, b2], ..., (b_{k-1}, b_k]``.

    Returns -1 for non-finite values or when no classes exist. Values outside the
    computed range land in the nearest end class.
    """
    number = _as_float(value)
    if number is None or not breaks or len(breaks) < 2:
        return -1
    classes = len(breaks) - 1
    return min(max(bisect_left(breaks, number) - 1, 0), classes - 1)


def color_for(value: object, breaks: Sequence[float], palette: Sequence[str] = PALETTE_5) -> str:
    index = class_index_of(value, breaks)
    if index < 0 or index >= len(palette):
        return NO_DATA_COLOR
    return palette[index]


def within_class_sum_of_squares(values: Sequence[object], breaks: Sequence[float]) -> float:
    groups: Dict[int, List[float]] = {}
    for number in _finite(values):
        groups.setdefault(class_index_of(number, breaks), []).append(float(number))
    total = 0.0
    for members in groups.values():
        mean = sum(members) / len(members)
        total += sum((member - mean) ** 2 for member in members)
    return total


def color_ramp_for(metric: str) -> List[str]:
    return COLOR_RAMPS.get(metric) or COLOR_RAMPS[DEFAULT_METRIC]


def _default_format(value: float) -> str:
    return f"{value:.1f}"


def legend_items(breaks: Sequence[float], formatter: Callable[[float], str] = _default_format) -> List[Dict]:
    return [
        {
            'range': f"{formatter(breaks[i])} – {formatter(breaks[i + 1])}",
            'min': breaks[i],
            'max': breaks[i + 1],
            'class_index': i + 1,
        }
        for i in range(len(breaks) - 1)
    ]


def format_class_label(index: int, breaks: Sequence[float], precision: int = 0) -> str:
    if index == 0:
        return f"≤ {breaks[1]:.{precision}f}"
    if index == len(breaks) - 2:
        return f"> {breaks[index]:.{precision}f}"
    return f"{breaks[index]:.{precision}f} – {breaks[index + 1]:.{precision}f}"


def risk_class_of(score: object) -> int:
    """Fixed-threshold risk class 0..4; missing scores count as 0, exactly 1.0 is the top class."""
    number = _as_float(score)
    clamped = max(0.0, min(1.0, number if number is not None else 0.0))
    for i in range(len(RISK_BINS) - 1):
        if RISK_BINS[i] <= clamped < RISK_BINS[i + 1]:
            return i
    return len(RISK_BINS) - 2


def risk_color_of(score: object) -> str:
    return RISK_COLORS[risk_class_of(score)]
