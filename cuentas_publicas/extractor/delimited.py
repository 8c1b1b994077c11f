"""Decoder for transposed delimited time-series tables.

Central-bank CSV downloads place one series per column and one period per row::

    row 0   series codes
    row 2   aliases (e.g. ``BE_13_9.4``)
    row 3   human-readable descriptions
    row 4   units
    row 6+  ``"MMM YYYY"`` label in column 0, values after it

Columns are resolved by matching description tokens, never by position, and
each data row is decoded into a named-field record at this boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cuentas_publicas.config import setup_logging
from cuentas_publicas.errors import StructuralError
from cuentas_publicas.utils.parsing import (
    matches_all,
    parse_international_number,
    parse_period_label,
    parse_spanish_number,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from datetime import date

logger = setup_logging(__name__)

__all__ = [
    "TimeSeriesRecord",
    "TimeSeriesRow",
    "TimeSeriesTable",
    "alias_suffix_columns",
    "build_column_map",
    "find_column",
    "latest_nonzero",
    "parse_transposed_csv",
    "split_delimited_line",
]

CODES_ROW = 0
ALIASES_ROW = 2
DESCRIPTIONS_ROW = 3
UNITS_ROW = 4
FIRST_DATA_ROW = 6


def split_delimited_line(line: str, delimiter: str = ",") -> list[str]:
    """Split one line into trimmed fields, honoring double-quoted segments."""
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    fields.append("".join(current).strip())
    return fields


@dataclass(frozen=True)
class TimeSeriesRow:
    """One data row: the period start date and the raw cells after column 0."""

    period: date
    cells: tuple[str, ...]

    def cell(self, column: int) -> str:
        """Return the raw text in ``column`` (1-based like the header rows), or ``""``."""
        index = column - 1
        return self.cells[index] if 0 <= index < len(self.cells) else ""


@dataclass(frozen=True)
class TimeSeriesRecord:
    """A data row decoded into named fields via a Column Map."""

    period: date
    values: dict[str, float]


@dataclass
class TimeSeriesTable:
    """Parsed transposed table.

    Attributes
    ----------
    codes, aliases, descriptions, units : list[str]
        Header rows, indexed by physical column (column 0 is the period label).
    rows : list[TimeSeriesRow]
        Data rows whose label parsed as a valid period, in file order.
    """

    codes: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    descriptions: list[str] = field(default_factory=list)
    units: list[str] = field(default_factory=list)
    rows: list[TimeSeriesRow] = field(default_factory=list)

    def records(
        self,
        column_map: Mapping[str, int],
        parse: Callable[[str], float | None] = parse_spanish_number,
    ) -> list[TimeSeriesRecord]:
        """Decode every row into named-field records.

        Cells that parse to ``None`` are omitted from the record's ``values``.
        """
        decoded: list[TimeSeriesRecord] = []
        for row in self.rows:
            values: dict[str, float] = {}
            for name, column in column_map.items():
                value = parse(row.cell(column))
                if value is not None:
                    values[name] = value
            decoded.append(TimeSeriesRecord(period=row.period, values=values))
        return decoded


def _header_row(lines: Sequence[str], index: int) -> list[str]:
    return split_delimited_line(lines[index]) if index < len(lines) else []


def parse_transposed_csv(text: str) -> TimeSeriesTable:
    """Parse transposed CSV text into a :class:`TimeSeriesTable`.

    Rows before :data:`FIRST_DATA_ROW`, rows with fewer than two fields, and
    rows whose label is not a ``"MMM YYYY"`` period are skipped silently.

    Raises
    ------
    StructuralError
        If the text has no data rows at all.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) <= FIRST_DATA_ROW:
        msg = f"Delimited table too short ({len(lines)} lines)"
        raise StructuralError(msg)

    table = TimeSeriesTable(
        codes=_header_row(lines, CODES_ROW),
        aliases=_header_row(lines, ALIASES_ROW),
        descriptions=_header_row(lines, DESCRIPTIONS_ROW),
        units=_header_row(lines, UNITS_ROW),
    )

    for line in lines[FIRST_DATA_ROW:]:
        fields = split_delimited_line(line)
        if len(fields) < 2:
            continue
        period = parse_period_label(fields[0])
        if period is None:
            continue
        table.rows.append(TimeSeriesRow(period=period, cells=tuple(fields[1:])))

    logger.debug("Parsed delimited table: %d columns, %d rows", len(table.descriptions), len(table.rows))
    return table


def find_column(table: TimeSeriesTable, *tokens: str, exclude: Sequence[int] = ()) -> int | None:
    """Return the first description column containing every token.

    Parameters
    ----------
    table : TimeSeriesTable
        Parsed table.
    *tokens : str
        Substrings that must all appear (case-insensitive).
    exclude : Sequence[int], optional
        Columns already claimed by another field.

    Returns
    -------
    int | None
        Physical column index, or ``None`` when no description matches.
    """
    for column, description in enumerate(table.descriptions):
        if column == 0 or column in exclude:
            continue
        if matches_all(description, tokens):
            return column
    return None


def build_column_map(table: TimeSeriesTable, targets: Mapping[str, Sequence[str]]) -> dict[str, int]:
    """Resolve each target field to a column; unresolved fields are omitted.

    Targets are resolved in mapping order and a column claimed by an earlier
    field is not reused, so broader token sets should come after narrower ones.
    """
    column_map: dict[str, int] = {}
    for name, tokens in targets.items():
        column = find_column(table, *tokens, exclude=list(column_map.values()))
        if column is None:
            logger.debug("No column matches %s (%s)", name, ", ".join(tokens))
            continue
        column_map[name] = column
    return column_map


def alias_suffix_columns(table: TimeSeriesTable) -> dict[int, int]:
    """Map ``.N`` alias suffixes (``BE_13_9.4`` -> 4) to their physical column."""
    suffixes: dict[int, int] = {}
    for column, alias in enumerate(table.aliases):
        if column == 0:
            continue
        head, dot, tail = alias.replace('"', "").rpartition(".")
        if dot and head and tail.isdigit():
            suffixes[int(tail)] = column
    return suffixes


def latest_nonzero(
    table: TimeSeriesTable,
    columns: Mapping[int, int],
) -> tuple[dict[int, float], date | None]:
    """Return the latest non-zero international-format value per key.

    Parameters
    ----------
    table : TimeSeriesTable
        Parsed table.
    columns : Mapping[int, int]
        Key (e.g. alias suffix) to physical column.

    Returns
    -------
    tuple[dict[int, float], date | None]
        Latest value per key and the last period that carried any data.
    """
    latest: dict[int, float] = {}
    latest_period: date | None = None
    for row in table.rows:
        row_has_data = False
        for key, column in columns.items():
            value = parse_international_number(row.cell(column))
            if value:
                latest[key] = value
                row_has_data = True
        if row_has_data:
            latest_period = row.period
    return latest, latest_period
