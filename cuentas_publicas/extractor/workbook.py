"""Heuristic extraction from spreadsheet workbooks.

Public-finance workbooks drift between publications: columns are inserted,
header rows move, and sheet names gain qualifiers. The helpers here locate
sheets, header rows and columns by content, then fall back to versioned
constant layouts when the dynamic path finds too little.

Column resolution is a pure function of the header cells, so callers never
know (or care) whether the dynamic or the constant map resolved a field.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from io import BytesIO
from typing import TYPE_CHECKING

from openpyxl import load_workbook

from cuentas_publicas.config import setup_logging
from cuentas_publicas.errors import StructuralError
from cuentas_publicas.utils.parsing import normalize_text, parse_cell_number

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = setup_logging(__name__)

__all__ = [
    "Grid",
    "HeaderMatch",
    "HierarchicalColumns",
    "cell_text",
    "discover_hierarchical_columns",
    "find_header_row",
    "find_year_sheets",
    "load_workbook_grids",
    "locate_row",
    "map_columns",
    "read_row_values",
    "select_sheet",
]

Grid = list[list[object]]

SUBITEM_CODE = re.compile(r"^(\d{2})\.\d+$")
YEAR_SHEET = re.compile(r"^(\d{4})(\s*\(?\s*[A-Za-z]+\s*\)?)?$")


# =============================================================================
# Loading
# =============================================================================


def load_workbook_grids(content: bytes) -> dict[str, Grid]:
    """Read every sheet of an ``.xlsx`` payload into value grids.

    Parameters
    ----------
    content : bytes
        Raw workbook bytes.

    Returns
    -------
    dict[str, Grid]
        Sheet name to list of rows (cell values, formulas already evaluated),
        in workbook order.

    Raises
    ------
    StructuralError
        If the payload is not a readable workbook.
    """
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as err:  # openpyxl raises zipfile/KeyError/InvalidFileException
        msg = f"Unreadable workbook: {err}"
        raise StructuralError(msg) from err

    try:
        return {ws.title: [list(row) for row in ws.iter_rows(values_only=True)] for ws in workbook.worksheets}
    finally:
        workbook.close()


def cell_text(row: Sequence[object], index: int) -> str:
    """Return the stripped text of ``row[index]`` or ``""`` when out of range."""
    if index < 0 or index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


# =============================================================================
# Sheet Selection
# =============================================================================


def select_sheet(names: Sequence[str], candidates: Sequence[str], default_index: int = 0) -> str:
    """Pick a sheet by exact name, then by substring, then by position.

    Matching is accent- and case-insensitive. Candidates are tried in order for
    each stage, so earlier candidates win.

    Raises
    ------
    StructuralError
        If the workbook has no sheets.
    """
    if not names:
        msg = "Workbook has no sheets"
        raise StructuralError(msg)

    normalized = {name: normalize_text(name) for name in names}
    for candidate in candidates:
        wanted = normalize_text(candidate)
        for name, norm in normalized.items():
            if norm == wanted:
                return name
    for candidate in candidates:
        wanted = normalize_text(candidate)
        for name, norm in normalized.items():
            if wanted in norm:
                return name

    fallback = names[default_index] if default_index < len(names) else names[0]
    logger.info("No sheet matched %s; using '%s'", list(candidates), fallback)
    return fallback


def find_year_sheets(names: Sequence[str]) -> dict[int, str]:
    """Map years to sheet names such as ``"2023"`` or ``"2024(P)"``.

    A definitive sheet wins over a provisional sheet for the same year.
    """
    found: dict[int, str] = {}
    for name in names:
        match = YEAR_SHEET.match(name.strip())
        if not match:
            continue
        year = int(match.group(1))
        is_provisional = bool(match.group(2))
        if year in found and is_provisional:
            continue
        found[year] = name
    return dict(sorted(found.items()))


# =============================================================================
# Row Discovery
# =============================================================================


@dataclass(frozen=True)
class HeaderMatch:
    """Outcome of a header scan.

    Attributes
    ----------
    row_index : int
        Zero-based row of the best candidate.
    score : int
        Number of expected labels found on that row.
    confident : bool
        False when the score was below the required minimum.
    """

    row_index: int
    score: int
    confident: bool


def find_header_row(
    grid: Grid,
    labels: Sequence[str],
    *,
    max_rows: int = 50,
    min_score: int | None = None,
) -> HeaderMatch | None:
    """Score the first ``max_rows`` rows and return the best header candidate.

    Each expected label found in the row's normalized text scores one point.
    A best score below ``min_score`` (default: every label) is still accepted
    but logged as low confidence.

    Returns
    -------
    HeaderMatch | None
        ``None`` only when no row matched any label.
    """
    required = len(labels) if min_score is None else min_score
    wanted = [normalize_text(label) for label in labels]
    best: HeaderMatch | None = None

    for index, row in enumerate(grid[:max_rows]):
        row_text = normalize_text(" ".join(str(c) for c in row if c is not None))
        score = sum(1 for label in wanted if label in row_text)
        if score and (best is None or score > best.score):
            best = HeaderMatch(row_index=index, score=score, confident=score >= required)

    if best is not None and not best.confident:
        logger.warning(
            "Low-confidence header at row %d (score %d/%d)",
            best.row_index,
            best.score,
            len(labels),
        )
    return best


def locate_row(
    grid: Grid,
    predicate: Callable[[Sequence[object]], bool],
    fixed_index: int | None = None,
) -> int | None:
    """Try ``fixed_index`` first, then scan every row for ``predicate``."""
    if fixed_index is not None and fixed_index < len(grid) and predicate(grid[fixed_index]):
        return fixed_index
    for index, row in enumerate(grid):
        if predicate(row):
            return index
    return None


# =============================================================================
# Column Discovery
# =============================================================================


def map_columns(
    header: Sequence[object],
    targets: Mapping[str, Sequence[str]],
    required: Sequence[str] = (),
) -> dict[str, int]:
    """Resolve logical fields to column indices by label substrings.

    Parameters
    ----------
    header : Sequence[object]
        Header row cells.
    targets : Mapping[str, Sequence[str]]
        Field name to substrings that must all appear in the normalized label.
    required : Sequence[str], optional
        Fields that must resolve.

    Returns
    -------
    dict[str, int]
        Column Map; each column is claimed by at most one field.

    Raises
    ------
    StructuralError
        If any required field is unresolved.
    """
    labels = [normalize_text(cell) for cell in header]
    column_map: dict[str, int] = {}

    for name, tokens in targets.items():
        wanted = [normalize_text(token) for token in tokens]
        for index, label in enumerate(labels):
            if not label or index in column_map.values():
                continue
            if all(token in label for token in wanted):
                column_map[name] = index
                break

    missing = [name for name in required if name not in column_map]
    if missing:
        msg = f"Columns not found: {', '.join(missing)}"
        raise StructuralError(msg)
    return column_map


@dataclass(frozen=True)
class HierarchicalColumns:
    """Column layout for grouped categories with per-group and grand totals.

    Attributes
    ----------
    subitems : dict[str, tuple[int, ...]]
        Group code (``"01"``) to its sub-item columns, ascending.
    group_totals : dict[str, int]
        Group code to the column holding the group total.
    grand_total : int
        Column holding the overall total.
    dynamic : bool
        True when discovered from header codes, False for the constant layout.
    """

    subitems: dict[str, tuple[int, ...]]
    group_totals: dict[str, int]
    grand_total: int
    dynamic: bool = True
    codes: dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_ranges(
        cls,
        ranges: Mapping[str, tuple[int, int]],
        group_totals: Mapping[str, int],
        grand_total: int,
    ) -> HierarchicalColumns:
        """Build the constant layout from inclusive ``(start, end)`` ranges."""
        return cls(
            subitems={code: tuple(range(start, end + 1)) for code, (start, end) in ranges.items()},
            group_totals=dict(group_totals),
            grand_total=grand_total,
            dynamic=False,
        )

    def column_map(self, header: Sequence[object], total_field: str = "total") -> dict[str, int]:
        """Return a Column Map naming every column of the layout.

        The grand total goes under ``total_field``, group totals under their
        group code and sub-items under the ``NN.M`` code read from ``header``.
        Sub-item columns whose header cell is not such a code are left out.
        """
        columns = {total_field: self.grand_total}
        for code in sorted(self.group_totals):
            columns[code] = self.group_totals[code]
            for index in self.subitems.get(code, ()):
                text = cell_text(header, index)
                if SUBITEM_CODE.match(text):
                    columns[text] = index
        return columns


def discover_hierarchical_columns(
    header: Sequence[object],
    expected_groups: int,
    fallback: HierarchicalColumns,
) -> HierarchicalColumns:
    """Discover ``NN.M`` sub-item columns and infer the total columns.

    Each group's total is the column right after its last sub-item; the grand
    total is the column right after the last group's total. When fewer than
    ``expected_groups`` groups are found the constant ``fallback`` is returned.
    """
    groups: dict[str, list[int]] = {}
    codes: dict[int, str] = {}
    for index, cell in enumerate(header):
        text = "" if cell is None else str(cell).strip()
        match = SUBITEM_CODE.match(text)
        if match:
            groups.setdefault(match.group(1), []).append(index)
            codes[index] = text

    if len(groups) < expected_groups:
        logger.warning(
            "Dynamic column discovery found %d of %d groups; using constant layout",
            len(groups),
            expected_groups,
        )
        return fallback

    ordered = sorted(groups)
    group_totals = {code: max(groups[code]) + 1 for code in ordered}
    discovered = HierarchicalColumns(
        subitems={code: tuple(sorted(groups[code])) for code in ordered},
        group_totals=group_totals,
        grand_total=group_totals[ordered[-1]] + 1,
        codes=codes,
    )
    if discovered.group_totals != fallback.group_totals:
        logger.info("Detected column layout differs from the standard one; adapting")
    return discovered


# =============================================================================
# Value Extraction
# =============================================================================


def read_row_values(
    row: Sequence[object],
    column_map: Mapping[str, int],
    total_field: str | None = None,
) -> dict[str, float] | None:
    """Decode a positional row into a named record.

    Missing or non-numeric cells read as ``0.0``, except the designated total:
    a missing or non-positive ``total_field`` rejects the whole row (``None``).
    Without a total field every row decodes.
    """
    if total_field is not None:
        total_index = column_map.get(total_field)
        if total_index is None:
            msg = f"Column map has no total field '{total_field}'"
            raise StructuralError(msg)
        total = parse_cell_number(row[total_index]) if total_index < len(row) else None
        if total is None or total <= 0:
            return None

    record: dict[str, float] = {}
    for name, index in column_map.items():
        value = parse_cell_number(row[index]) if index < len(row) else None
        record[name] = value if value is not None else 0.0
    return record
