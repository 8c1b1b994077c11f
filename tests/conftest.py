"""Pytest configuration for cuentas_publicas tests.

This module provides:
- ``.env`` loading so path overrides apply during tests
- In-memory workbook builders (openpyxl)
- Sample transposed CSV text and JSON-stat payloads
- Minimal live and fallback dataset results
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
from dotenv import load_dotenv
from openpyxl import Workbook

if TYPE_CHECKING:
    from cuentas_publicas.transformer.provenance import DatasetResult

# Load environment variables from project .env so DATA_DIR/LOGS_DIR overrides apply
PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env")


def build_workbook_bytes(sheets: dict[str, list[list[Any]]]) -> bytes:
    """Serialize ``{sheet_name: rows}`` into ``.xlsx`` bytes."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        sheet = workbook.create_sheet(title=name)
        for row in rows:
            sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_transposed_csv(
    descriptions: list[str],
    rows: list[tuple[str, list[str]]],
    aliases: list[str] | None = None,
) -> str:
    """Build central-bank style transposed CSV text.

    Row 0 holds codes, row 2 aliases, row 3 descriptions, row 4 units and data
    starts at row 6. Every value is quoted like the real downloads.
    """
    width = len(descriptions)
    alias_cells = aliases if aliases is not None else [f"A.{i}" for i in range(1, width + 1)]

    def line(label: str, cells: list[str]) -> str:
        return ",".join(f'"{cell}"' for cell in [label, *cells])

    header = [
        line("CODIGO", [f"S{i}" for i in range(1, width + 1)]),
        line("NUMERO", [str(i) for i in range(1, width + 1)]),
        line("ALIAS", alias_cells),
        line("DESCRIPCION", descriptions),
        line("UNIDADES", ["Miles de euros"] * width),
        line("FUENTE", ["Banco de España"] * width),
    ]
    return "\n".join(header + [line(label, cells) for label, cells in rows]) + "\n"


def build_cube(
    geos: list[str],
    times: list[str],
    values: dict[tuple[str, str], float],
    extra_dims: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Build a JSON-stat payload with ``[*extra_dims, geo, time]`` dimensions.

    ``values`` is sparse and keyed by ``(geo, time)``; the payload uses the
    dict form keyed by stringified offsets.
    """
    extra = extra_dims or {}
    ids = [*extra, "geo", "time"]
    sizes = [1] * len(extra) + [len(geos), len(times)]
    dimension: dict[str, Any] = {
        dim: {"category": {"index": {code: 0}, "label": {code: code}}} for dim, code in extra.items()
    }
    dimension["geo"] = {"category": {"index": {g: i for i, g in enumerate(geos)}}}
    dimension["time"] = {"category": {"index": {t: i for i, t in enumerate(times)}}}
    flat = {
        str(geos.index(geo) * len(times) + times.index(time)): value for (geo, time), value in values.items()
    }
    return {"id": ids, "size": sizes, "dimension": dimension, "value": flat}


@pytest.fixture
def workbook_bytes():
    """Factory fixture returning :func:`build_workbook_bytes`."""
    return build_workbook_bytes


@pytest.fixture
def transposed_csv():
    """Factory fixture returning :func:`build_transposed_csv`."""
    return build_transposed_csv


@pytest.fixture
def cube_payload():
    """Factory fixture returning :func:`build_cube`."""
    return build_cube


def build_result(source: str, *, fallback: bool = False, periods: tuple[str, ...] = ("2024",)) -> DatasetResult:
    """Build a one-field dataset result, live or on reference values."""
    from cuentas_publicas.transformer.provenance import OriginKind, ProvenanceTracker

    tracker = ProvenanceTracker(source)
    if fallback:
        tracker.fallback("value", "Valor referencia", "https://example.org/ref", note="HTTP 503")
    else:
        tracker.live("value", OriginKind.API, "API de prueba", "https://example.org/api", date(2025, 3, 31))
    tracker.derived("ratio", ["value"])
    return tracker.build(
        {"value": 1.5, "nested": {"years": [2024]}},
        periods=periods,
        as_of=datetime(2026, 2, 1, 12, 0, tzinfo=UTC),
    )


@pytest.fixture
def dataset_result():
    """Factory fixture returning :func:`build_result`."""
    return build_result
