"""Least-squares and correlation helpers tolerant of degenerate input."""

from __future__ import annotations

import math
import statistics
from collections.abc import Sequence


def linear_regression(x: Sequence[float], y: Sequence[float]) -> tuple[float, float]:
    """Ordinary least squares of ``y`` on ``x``.

    Returns:
        ``(slope, r)`` where ``r`` is Pearson's correlation. Both are 0.0
        when either series is constant or shorter than two points.
    """
    n = len(x)
    if n < 2 or n != len(y):
        return 0.0, 0.0

    mean_x = statistics.fmean(x)
    mean_y = statistics.fmean(y)
    sxx = sum((xi - mean_x) ** 2 for xi in x)
    syy = sum((yi - mean_y) ** 2 for yi in y)
    sxy = sum((xi - mean_x) * (yi - mean_y) for xi, yi in zip(x, y))

    slope = sxy / sxx if sxx > 0 else 0.0
    denom = math.sqrt(sxx * syy)
    r = sxy / denom if denom > 0 else 0.0
    # Float error can push |r| a hair past 1 for perfectly linear input
    return slope, max(-1.0, min(1.0, r))


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson's r, or 0.0 when undefined."""
    return linear_regression(x, y)[1]
