"""Period and timestamp helpers shared by sources and the orchestrator."""

from __future__ import annotations

import calendar
import re
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

__all__ = ["epoch_ms", "month_end", "pick_latest_date", "to_iso_date"]

_YEAR = re.compile(r"^(\d{4})$")
_MONTH = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER = re.compile(r"^(\d{4})-Q([1-4])$", re.IGNORECASE)
_QUARTER_END = {1: (3, 31), 2: (6, 30), 3: (9, 30), 4: (12, 31)}


def epoch_ms(day: date) -> float:
    """Milliseconds since the epoch for midnight UTC on ``day``."""
    return datetime(day.year, day.month, day.day, tzinfo=UTC).timestamp() * 1000


def month_end(year: int, month: int) -> date:
    """Last calendar day of ``year``/``month``."""
    return date(year, month, calendar.monthrange(year, month)[1])


def to_iso_date(value: object) -> str | None:
    """Normalize a year, ``YYYY-MM`` or ``YYYY-QN`` label, date or ISO string to ``YYYY-MM-DD``.

    Years map to 31 December, months and quarters to their last day. Unparseable
    values return ``None``.

    Examples
    --------
    >>> to_iso_date(2023)
    '2023-12-31'
    >>> to_iso_date("2025-Q3")
    '2025-09-30'
    >>> to_iso_date("2025-02")
    '2025-02-28'
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, int | float):
        return f"{int(value)}-12-31"

    text = str(value).strip()
    if not text:
        return None
    if match := _YEAR.match(text):
        return f"{match.group(1)}-12-31"
    if (match := _MONTH.match(text)) and 1 <= int(match.group(2)) <= 12:
        return month_end(int(match.group(1)), int(match.group(2))).isoformat()
    if match := _QUARTER.match(text):
        month, day = _QUARTER_END[int(match.group(2))]
        return f"{match.group(1)}-{month:02d}-{day:02d}"
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return None


def pick_latest_date(values: Iterable[object]) -> str | None:
    """Return the latest of ``values`` after :func:`to_iso_date` normalization."""
    normalized = [iso for iso in (to_iso_date(v) for v in values) if iso]
    return max(normalized) if normalized else None
