"""
Time-series downsampling for charts.

Reduces a long daily series to a bounded number of points while keeping
the points that matter (trade days, first and last observation). Two
variants: near-uniform sampling, and a shape-preserving one based on
Douglas-Peucker curve simplification.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

import numpy as np
import pandas as pd

import config

KeyPointFn = Callable[[Any], bool]


def _field(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def _key_indices(
    series: Sequence[Any],
    is_key_point: KeyPointFn | None,
    keep_ends: bool,
) -> set[int]:
    keys: set[int] = set()
    if keep_ends and series:
        keys.update((0, len(series) - 1))
    if is_key_point is not None:
        keys.update(i for i, item in enumerate(series) if is_key_point(item))
    return keys


def _evenly_spaced(candidates: Sequence[int], count: int) -> list[int]:
    """``count`` members of ``candidates`` spread evenly across them."""
    if count <= 0 or not candidates:
        return []
    if count >= len(candidates):
        return list(candidates)
    # Midpoints of count equal buckets
    positions = np.floor((np.arange(count) + 0.5) * len(candidates) / count).astype(int)
    return [candidates[p] for p in positions]


def _fill_budget(candidates: Sequence[int], keys: set[int], max_points: int) -> list[int]:
    """Keys plus evenly spaced non-key candidates, at most ``max_points`` unless keys alone exceed it."""
    others = [i for i in candidates if i not in keys]
    picked = _evenly_spaced(others, max(0, max_points - len(keys)))
    return sorted(keys.union(picked))


# ---------------------------------------------------------------------------
# Uniform sampling
# ---------------------------------------------------------------------------

def downsample(
    series: Sequence[Any],
    max_points: int = config.CHART_MAX_POINTS,
    is_key_point: KeyPointFn | None = None,
    keep_ends: bool = True,
) -> list[Any]:
    """
    Thin a series to at most ``max_points`` items.

    Parameters
    ----------
    series : sequence
        Items in display order (dicts, dataclasses, anything).
    max_points : int
        Point budget. A series already within budget is returned unchanged.
    is_key_point : callable or None
        ``is_key_point(item) -> bool``; matching items are always kept.
    keep_ends : bool
        Always keep the first and last item.

    Returns
    -------
    list
        Selected items in their original order. Longer than ``max_points``
        only when the key points alone exceed the budget, in which case
        exactly the key points are returned.
    """
    if max_points <= 0:
        raise ValueError(f"max_points must be positive, got {max_points}")
    if len(series) <= max_points:
        return list(series)

    keys = _key_indices(series, is_key_point, keep_ends)
    indices = _fill_budget(range(len(series)), keys, max_points)
    return [series[i] for i in indices]


# ---------------------------------------------------------------------------
# Shape-preserving variant
# ---------------------------------------------------------------------------

def _as_axis(values: Sequence[Any]) -> np.ndarray:
    arr = np.asarray(values)
    if np.issubdtype(arr.dtype, np.number):
        return arr.astype(float)
    return pd.to_datetime(arr).asi8.astype(float)


def _normalize(axis: np.ndarray) -> np.ndarray:
    span = axis.max() - axis.min()
    if span == 0:
        return np.zeros_like(axis)
    return (axis - axis.min()) / span


def douglas_peucker(
    times: Sequence[Any],
    values: Sequence[float],
    epsilon: float,
) -> np.ndarray:
    """
    Indices kept by Douglas-Peucker simplification.

    Time and value axes are each scaled to [0, 1] before distances are
    measured, so ``epsilon`` is a fraction of the plotted extent.
    Dates are accepted on the time axis. Always keeps both ends.
    """
    n = len(values)
    if n <= 2:
        return np.arange(n)

    x = _normalize(_as_axis(times))
    y = _normalize(np.nan_to_num(np.asarray(values, dtype=float)))

    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True
    stack = [(0, n - 1)]

    while stack:
        start, end = stack.pop()
        if end - start < 2:
            continue
        dx, dy = x[end] - x[start], y[end] - y[start]
        px, py = x[start + 1:end] - x[start], y[start + 1:end] - y[start]
        norm = np.hypot(dx, dy)
        if norm > 0:
            dist = np.abs(dx * py - dy * px) / norm
        else:
            dist = np.hypot(px, py)

        i = int(np.argmax(dist))
        if dist[i] > epsilon:
            split = start + 1 + i
            keep[split] = True
            stack.append((start, split))
            stack.append((split, end))

    return np.flatnonzero(keep)


def shape_preserving_downsample(
    series: Sequence[Any],
    max_points: int = config.CHART_MAX_POINTS,
    value_key: str = "value",
    date_key: str = "date",
    is_key_point: KeyPointFn | None = None,
    keep_ends: bool = True,
) -> list[Any]:
    """
    Downsample keeping the curve's shape.

    Douglas-Peucker runs with a tolerance starting at 0.001 and doubling
    until the simplified points plus key points fit ``max_points`` (or the
    tolerance reaches 1). Any excess left is thinned evenly; key points
    are never dropped.
    """
    if max_points <= 0:
        raise ValueError(f"max_points must be positive, got {max_points}")
    if len(series) <= max_points:
        return list(series)

    keys = _key_indices(series, is_key_point, keep_ends)
    times = [_field(item, date_key) for item in series]
    values = [_field(item, value_key) or 0.0 for item in series]

    epsilon = 0.001
    while True:
        selected = keys.union(douglas_peucker(times, values, epsilon).tolist())
        if len(selected) <= max_points or epsilon >= 1.0:
            break
        epsilon *= 2

    if len(selected) > max_points:
        indices = _fill_budget(sorted(selected), keys, max_points)
    else:
        indices = sorted(selected)
    return [series[i] for i in indices]
