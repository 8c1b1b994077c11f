"""Shared parsing utilities for Spanish-locale numbers, labels and periods.

Spanish publications use ``.`` as thousands separator and ``,`` as decimal
separator, while some central-bank regional CSVs use the international form.
Both parsers live here so every decoder applies the same rule.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import date
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

__all__ = [
    "MONTHS_ES",
    "matches_all",
    "normalize_text",
    "parse_cell_number",
    "parse_international_number",
    "parse_period_label",
    "parse_spanish_number",
]

MONTHS_ES: dict[str, int] = {
    "ENE": 1,
    "FEB": 2,
    "MAR": 3,
    "ABR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AGO": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DIC": 12,
}

_NUMERIC_PATTERN = re.compile(r"^-?[\d.,]+$")


# =============================================================================
# Number Parsing
# =============================================================================


def parse_spanish_number(value: str | None) -> float:
    """Parse a number string using Spanish locale conventions.

    Examples
    --------
    >>> parse_spanish_number("1.234,56")
    1234.56
    >>> parse_spanish_number("N/A")
    0.0

    Parameters
    ----------
    value
        Raw cell text.

    Returns
    -------
    float
        Parsed value. Empty, ``None`` or non-numeric input yields ``0.0``.
    """
    if not value:
        return 0.0

    cleaned = str(value).strip().strip('"').strip()
    if not _NUMERIC_PATTERN.match(cleaned):
        return 0.0

    normalized = cleaned.replace(".", "").replace(",", ".")
    try:
        return float(normalized)
    except ValueError:
        return 0.0


def parse_cell_number(value: object) -> float | None:
    """Parse a spreadsheet cell into a float.

    Numeric cells pass through; strings go through the Spanish rule. Blank or
    non-numeric cells return ``None`` so callers can distinguish "missing"
    from a genuine zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)

    text = str(value).strip()
    if not text or not _NUMERIC_PATTERN.match(text):
        return None
    return parse_spanish_number(text)


def parse_international_number(text: str | None) -> float | None:
    """Parse ``"123.45"`` style numbers; ``_`` and blanks mean missing."""
    if text is None:
        return None
    cleaned = text.strip().strip('"').strip()
    if not cleaned or cleaned == "_":
        return None
    try:
        return float(cleaned)
    except ValueError:
        logger.debug("Not an international number: %r", text)
        return None


# =============================================================================
# Text Normalization and Matching
# =============================================================================


def normalize_text(text: object) -> str:
    """Strip accents, casefold, and collapse whitespace for label comparison."""
    if text is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"\s+", " ", stripped.casefold()).strip()


def matches_all(text: str, tokens: Iterable[str]) -> bool:
    """Return True if every token appears in ``text`` (case-insensitive)."""
    haystack = text.lower()
    return all(token.lower() in haystack for token in tokens)


# =============================================================================
# Period Labels
# =============================================================================


def parse_period_label(label: str) -> date | None:
    """Parse a ``"MMM YYYY"`` label such as ``"DIC 1994"`` into a first-of-month date.

    Returns
    -------
    date | None
        ``None`` when the label is not a recognised month/year pair.
    """
    parts = label.strip().strip('"').split()
    if len(parts) != 2:
        return None

    month = MONTHS_ES.get(parts[0].upper())
    if month is None or not parts[1].isdigit():
        return None
    return date(int(parts[1]), month, 1)
