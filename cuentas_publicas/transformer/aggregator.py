"""Temporal aggregation with an all-or-nothing completeness filter.

Sub-period observations (months, quarters) are rolled up into period totals.
A group is published only when every expected sub-period was observed; partial
years are dropped, never interpolated, so they cannot leak into year-over-year
comparisons downstream.
"""

from __future__ import annotations

import math
from collections.abc import Hashable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cuentas_publicas.config import setup_logging

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = setup_logging(__name__)

__all__ = [
    "AnnualAggregate",
    "CompletenessAggregator",
    "PeriodObservation",
    "Year",
    "YearMonth",
    "YearQuarter",
    "thousands_to_millions",
]

MONTHS = range(1, 13)
QUARTERS = range(1, 5)


# =============================================================================
# Period Types
# =============================================================================


@dataclass(frozen=True, order=True)
class Year:
    """Calendar year period."""

    year: int

    def __str__(self) -> str:
        return str(self.year)


@dataclass(frozen=True, order=True)
class YearMonth:
    """Calendar month period."""

    year: int
    month: int

    def __str__(self) -> str:
        return f"{self.year}-{self.month:02d}"

    @property
    def sub_period(self) -> int:
        return self.month


@dataclass(frozen=True, order=True)
class YearQuarter:
    """Calendar quarter period (``2025-Q3``)."""

    year: int
    quarter: int

    def __str__(self) -> str:
        return f"{self.year}-Q{self.quarter}"

    @property
    def sub_period(self) -> int:
        return self.quarter

    @classmethod
    def from_month(cls, year: int, month: int) -> YearQuarter:
        """Return the quarter containing ``month``."""
        return cls(year, (month - 1) // 3 + 1)


@dataclass(frozen=True)
class PeriodObservation:
    """A value observed for one period, already in its documented base unit."""

    period: Year | YearMonth | YearQuarter
    value: float


@dataclass
class AnnualAggregate:
    """Year-level totals with named components and optional nested breakdowns."""

    total: float
    components: dict[str, float] = field(default_factory=dict)
    breakdowns: dict[str, dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Flatten into ``{"total": ..., <components>..., <name>Breakdown: {...}}``."""
        result: dict[str, object] = {"total": self.total, **self.components}
        for name, breakdown in self.breakdowns.items():
            result[f"{name}_breakdown"] = dict(breakdown)
        return result


# =============================================================================
# Aggregation
# =============================================================================


@dataclass
class _GroupAccumulator:
    sums: dict[str, float] = field(default_factory=dict)
    seen: set[int] = field(default_factory=set)


class CompletenessAggregator:
    """Running sums per group plus the set of sub-periods seen for each.

    Parameters
    ----------
    expected : Iterable[int]
        Sub-period numbers that make a group complete (default: months 1-12).
    label : str
        Name used in diagnostics.

    Examples
    --------
    >>> agg = CompletenessAggregator()
    >>> for month in range(1, 13):
    ...     agg.add(2024, month, {"total": 1000})
    >>> agg.complete()
    {2024: {'total': 12000.0}}
    """

    def __init__(self, expected: Iterable[int] = MONTHS, label: str = "aggregate") -> None:
        self.expected = frozenset(expected)
        self.label = label
        self._groups: dict[Hashable, _GroupAccumulator] = {}

    def add(self, group: Hashable, sub_period: int, values: Mapping[str, float]) -> bool:
        """Accumulate one observation.

        Out-of-range sub-periods (e.g. month 13) are ignored and do not count
        toward completeness.

        Returns
        -------
        bool
            True if the observation was accepted.
        """
        if sub_period not in self.expected:
            logger.debug("%s: ignoring sub-period %r for %r", self.label, sub_period, group)
            return False

        accumulator = self._groups.setdefault(group, _GroupAccumulator())
        accumulator.seen.add(sub_period)
        for name, value in values.items():
            accumulator.sums[name] = accumulator.sums.get(name, 0.0) + value
        return True

    def observe(
        self,
        observation: PeriodObservation,
        name: str = "value",
        group: Hashable | None = None,
    ) -> bool:
        """Accumulate a single-valued observation under ``name``.

        The group defaults to the observation's :class:`Year` and the
        sub-period is its month or quarter.

        Raises
        ------
        TypeError
            If the observation is annual and so has no sub-period.
        """
        period = observation.period
        if isinstance(period, Year):
            msg = f"{self.label}: annual observation {period} has no sub-period"
            raise TypeError(msg)
        key = Year(period.year) if group is None else group
        return self.add(key, period.sub_period, {name: observation.value})

    def sums(self, group: Hashable) -> dict[str, float]:
        """Return the running sums for ``group`` whether or not it is complete."""
        accumulator = self._groups.get(group)
        return dict(accumulator.sums) if accumulator is not None else {}

    def dropped(self) -> dict[Hashable, int]:
        """Return incomplete groups with the count of sub-periods observed."""
        return {
            group: len(acc.seen) for group, acc in self._groups.items() if acc.seen != self.expected
        }

    def complete(self) -> dict[Hashable, dict[str, float]]:
        """Return sums for complete groups only, logging each dropped group."""
        for group, count in self.dropped().items():
            logger.info(
                "%s %s: only %d of %d sub-periods - dropped (incomplete)",
                self.label,
                group,
                count,
                len(self.expected),
            )
        return {
            group: dict(acc.sums) for group, acc in self._groups.items() if acc.seen == self.expected
        }


def thousands_to_millions(value: float, ndigits: int | None = 0) -> float:
    """Convert thousands of euros to millions, rounding to ``ndigits`` (``None``: no rounding)."""
    millions = value / 1000
    if ndigits is None:
        return millions
    if ndigits == 0:
        # Half-up, matching the published figures
        return float(math.floor(millions + 0.5))
    return round(millions, ndigits)
