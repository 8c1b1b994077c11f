"""Ordinary least-squares trend over ``(x, y)`` points.

Used to extrapolate counters (debt per second, pension expense per second)
between refresh cycles. Degenerate inputs return a fixed policy instead of NaN.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = ["LinearFit", "linear_regression", "predict"]


@dataclass(frozen=True)
class LinearFit:
    """Fitted line ``y = slope * x + intercept``."""

    slope: float
    intercept: float

    def predict(self, x: float) -> float:
        """Evaluate the line at ``x``."""
        return self.slope * x + self.intercept


def linear_regression(points: Iterable[tuple[float, float]]) -> LinearFit:
    """Fit a line through ``points`` by ordinary least squares.

    Parameters
    ----------
    points : Iterable[tuple[float, float]]
        ``(x, y)`` pairs, typically ``(timestamp_ms, value)``.

    Returns
    -------
    LinearFit
        Zero points give slope 0 and intercept 0; one point gives slope 0 and
        that point's ``y``; a zero denominator (all ``x`` equal) gives slope 0
        and the mean of ``y``.

    Examples
    --------
    >>> linear_regression([(0, 1), (1, 3), (2, 5)])
    LinearFit(slope=2.0, intercept=1.0)
    """
    pairs = list(points)
    n = len(pairs)
    if n == 0:
        return LinearFit(slope=0.0, intercept=0.0)
    if n == 1:
        return LinearFit(slope=0.0, intercept=float(pairs[0][1]))

    sum_x = sum(x for x, _ in pairs)
    sum_y = sum(y for _, y in pairs)
    sum_xy = sum(x * y for x, y in pairs)
    sum_xx = sum(x * x for x, _ in pairs)

    numerator = n * sum_xy - sum_x * sum_y
    denominator = n * sum_xx - sum_x * sum_x
    slope = numerator / denominator if denominator != 0 else 0.0
    intercept = (sum_y - slope * sum_x) / n
    return LinearFit(slope=float(slope), intercept=float(intercept))


def predict(fit: LinearFit, x: float) -> float:
    """Evaluate ``fit`` at ``x``."""
    return fit.predict(x)
