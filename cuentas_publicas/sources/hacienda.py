"""Regional fiscal balance from the Ministerio de Hacienda financing settlements.

Each year's ``cuadros-liquidacion-YYYY.xlsx`` reports, per common-regime
community, the ceded-tax settlement (IRPF, IVA, excise duties) and the four
financing funds. The net balance is transfers minus ceded taxes. Foral
communities (Navarra, País Vasco) and the autonomous cities are not part of
this system.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

from cuentas_publicas.config import get_source_urls, setup_logging
from cuentas_publicas.errors import IngestionError, StructuralError
from cuentas_publicas.extractor.workbook import (
    cell_text,
    find_header_row,
    load_workbook_grids,
    map_columns,
)
from cuentas_publicas.regions import CCAA, resolve_region
from cuentas_publicas.scraper.http_client import fetch_bytes, fetch_text
from cuentas_publicas.transformer.provenance import (
    DatasetResult,
    OriginKind,
    ProvenanceTracker,
    frozen_copy,
    run_with_fallback,
)
from cuentas_publicas.utils.dates import month_end
from cuentas_publicas.utils.parsing import normalize_text, parse_cell_number

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from cuentas_publicas.extractor.workbook import Grid

logger = setup_logging(__name__)

__all__ = [
    "COVERAGE",
    "REFERENCE_FISCAL_BALANCE_2023",
    "build_fiscal_balance_entry",
    "build_fiscal_balance_fallback",
    "compute_year_totals",
    "detect_year_links",
    "fetch_ccaa_fiscal_balance_data",
    "parse_settlement_sheet",
]

INDEX_TIMEOUT_MS = 45_000
WORKBOOK_TIMEOUT_MS = 60_000

YEAR_LINK = re.compile(r'href="([^"]*cuadros-liquidacion-(\d{4})\.xlsx[^"]*)"', re.IGNORECASE)
SHEET_NAME = "3. liquidacion definitiva"

HEADER_LABELS = (
    "comunidad",
    "tarifa autonomica de irpf",
    "impuesto sobre el valor anadido",
    "total impuestos especiales",
    "transferencia del fondo de garantia",
)
COLUMN_LABELS: dict[str, tuple[str, ...]] = {
    "name": ("comunidad", "ciudad"),
    "irpf": ("tarifa autonomica de irpf",),
    "iva": ("impuesto sobre el valor anadido",),
    "iiee": ("total impuestos especiales",),
    "fondo_garantia": ("transferencia del fondo de garantia",),
    "fondo_suficiencia": ("fondo de suficiencia global",),
    "fondo_competitividad": ("fondo de competitividad",),
    "fondo_cooperacion": ("fondo de cooperacion",),
}
TAX_FIELDS = ("irpf", "iva", "iiee")
FUND_FIELDS = ("fondo_garantia", "fondo_suficiencia", "fondo_competitividad", "fondo_cooperacion")
FORAL_CODES = frozenset({"CA15", "CA16"})

COVERAGE: Mapping[str, Any] = frozen_copy(
    {
        "regime": "common",
        "includes_ceuta_melilla": False,
        "excludes_foral": True,
        "notes": "Liquidación del sistema de financiación de régimen común. No incluye Navarra ni País Vasco.",
    }
)


# =============================================================================
# Entry Construction
# =============================================================================


def _millions(value: float) -> float:
    return round(value, 3)


def build_fiscal_balance_entry(code: str, taxes: Mapping[str, float], funds: Mapping[str, float]) -> dict[str, Any]:
    """Compute the balance fields for one community.

    Parameters
    ----------
    code : str
        INE region code.
    taxes, funds : Mapping[str, float]
        Ceded-tax and fund settlements in millions of euros.

    Returns
    -------
    dict
        ``ceded_taxes``, ``transfers``, ``net_balance`` and
        ``transfer_to_tax_ratio`` (``None`` when ceded taxes are zero), plus
        both breakdowns.
    """
    ceded = _millions(sum(taxes[name] for name in TAX_FIELDS))
    transfers = _millions(sum(funds[name] for name in FUND_FIELDS))
    return {
        "code": code,
        "name": CCAA[code].name,
        "ceded_taxes": ceded,
        "transfers": transfers,
        "net_balance": _millions(transfers - ceded),
        "transfer_to_tax_ratio": None if ceded == 0 else _millions(transfers / ceded),
        "ceded_taxes_breakdown": {name: taxes[name] for name in TAX_FIELDS},
        "transfers_breakdown": {name: funds[name] for name in FUND_FIELDS},
    }


def compute_year_totals(entries: Sequence[Mapping[str, Any]]) -> dict[str, float]:
    """Sum ceded taxes, transfers and net balance across communities."""
    return {
        field: _millions(sum(entry[field] for entry in entries))
        for field in ("ceded_taxes", "transfers", "net_balance")
    }


# =============================================================================
# Reference Values
# =============================================================================


def _reference_entry(code: str, irpf: float, iva: float, iiee: float, *funds: float) -> dict[str, Any]:
    return build_fiscal_balance_entry(
        code,
        {"irpf": irpf, "iva": iva, "iiee": iiee},
        dict(zip(FUND_FIELDS, funds, strict=True)),
    )


# Liquidación 2023, millions of euros: irpf, iva, iiee, then the four funds
_REFERENCE_ENTRIES_2023 = [
    _reference_entry("CA01", 802.191, -80.894, -249.164, 77.286, 35.048, 0, 645.763),
    _reference_entry("CA02", 47.372, -15.893, -105.587, 114.755, 19.356, 0, 60.876),
    _reference_entry("CA03", 58.63, -51.691, -54.553, 70.361, 13.021, 0, 191.44),
    _reference_entry("CA04", 471.194, -208.198, 4.359, -93.438, -48.908, 912.475, 0),
    _reference_entry("CA05", 221.447, 0, -43.727, -132.885, 5.133, 768.884, 163.234),
    _reference_entry("CA06", 50.039, -37.122, -26.154, 63.007, 34.3, 0, 110.654),
    _reference_entry("CA07", 163.995, -89.299, -100.124, 168.635, 30.289, 0, 442.76),
    _reference_entry("CA08", 151.996, -87.721, -106.008, 177.02, 5.526, 0, 142.765),
    _reference_entry("CA09", 1443.334, -42.84, -133.901, -128.336, 62.035, 1523.187, 0),
    _reference_entry("CA10", 398.129, -92.843, -144.826, 239.96, -100.993, 1363.413, 341.056),
    _reference_entry("CA11", 33.927, -6.661, -35.912, 21.28, 31.143, 0, 212.563),
    _reference_entry("CA12", 238.908, -62.087, -138.216, 89.96, 41.71, 0, 509.188),
    _reference_entry("CA13", 621.484, 563.74, -187.409, -389.868, -52.587, 249.688, 0),
    _reference_entry("CA14", 100.99, -15.927, -52.617, 116.766, -14.055, 160.947, 104.816),
    _reference_entry("CA17", 20.568, -3.562, -5.222, 11.471, 14.853, 0, 16.451),
]

REFERENCE_FISCAL_BALANCE_2023: Mapping[str, Any] = frozen_copy(
    {
        "years": [2023],
        "latest_year": 2023,
        "by_year": {
            "2023": {
                "entries": _REFERENCE_ENTRIES_2023,
                "totals": compute_year_totals(_REFERENCE_ENTRIES_2023),
            }
        },
        "coverage": COVERAGE,
    }
)


# =============================================================================
# Parsing
# =============================================================================


def detect_year_links(html: str, base_url: str) -> dict[int, str]:
    """Return ``{year: absolute workbook URL}``, ascending; later links for a year win."""
    links: dict[int, str] = {}
    for match in YEAR_LINK.finditer(html):
        links[int(match.group(2))] = urljoin(base_url, match.group(1))
    return dict(sorted(links.items()))


def _find_settlement_sheet(names: Sequence[str]) -> str:
    for name in names:
        if normalize_text(name) == SHEET_NAME:
            return name
    for name in names:
        if "liquidacion definitiva" in normalize_text(name):
            return name
    msg = f"No 'liquidación definitiva' sheet among {list(names)}"
    raise StructuralError(msg)


def _is_summary_row(label: str) -> bool:
    return label.startswith("total") or label in ("ceuta", "melilla")


def _thousands_to_millions(row: Sequence[object], index: int) -> float:
    value = parse_cell_number(row[index]) if index < len(row) else None
    return round((value or 0.0) / 1000, 3)


def parse_settlement_sheet(grid: Grid, year: int) -> dict[str, Any]:
    """Parse one year's settlement sheet into entries and totals.

    Raises
    ------
    StructuralError
        If the header, a required column, or every community row is missing.
    """
    header = find_header_row(grid, HEADER_LABELS)
    if header is None:
        msg = f"{year}: expected settlement header not found"
        raise StructuralError(msg)
    if not header.confident:
        # Accepted only if every required column still resolves below
        logger.warning("%d: partially labelled settlement header at row %d", year, header.row_index)

    columns = map_columns(grid[header.row_index], COLUMN_LABELS, required=(*TAX_FIELDS, *FUND_FIELDS))
    name_col = columns.get("name", 0)

    entries = []
    for row in grid[header.row_index + 1 :]:
        raw_name = cell_text(row, name_col)
        if not raw_name or _is_summary_row(normalize_text(raw_name)):
            continue
        region = resolve_region(raw_name)
        if region is None or region.code in FORAL_CODES:
            logger.debug("%d: skipping row '%s'", year, raw_name)
            continue
        entries.append(
            build_fiscal_balance_entry(
                region.code,
                {name: _thousands_to_millions(row, columns[name]) for name in TAX_FIELDS},
                {name: _thousands_to_millions(row, columns[name]) for name in FUND_FIELDS},
            )
        )

    if not entries:
        msg = f"{year}: no community rows in settlement sheet"
        raise StructuralError(msg)
    entries.sort(key=lambda entry: entry["code"])
    return {"entries": entries, "totals": compute_year_totals(entries)}


# =============================================================================
# Dataset
# =============================================================================


async def _fetch_year(year: int, url: str) -> dict[str, Any]:
    grids = load_workbook_grids(await fetch_bytes(url, timeout_ms=WORKBOOK_TIMEOUT_MS))
    return parse_settlement_sheet(grids[_find_settlement_sheet(list(grids))], year)


async def _fetch_fiscal_balance_live() -> DatasetResult:
    index_url = get_source_urls("hacienda")["index_page"]
    links = detect_year_links(await fetch_text(index_url, timeout_ms=INDEX_TIMEOUT_MS), index_url)
    if not links:
        msg = "No 'cuadros-liquidacion-YYYY.xlsx' links on the index page"
        raise StructuralError(msg)
    logger.info("Settlement years detected: %s", ", ".join(str(y) for y in links))

    by_year: dict[str, Any] = {}
    for year, url in links.items():
        try:
            by_year[str(year)] = await _fetch_year(year, url)
        except IngestionError as err:
            logger.warning("Settlement %d skipped: %s", year, err)
            continue
        logger.info("Settlement %d: %d communities", year, len(by_year[str(year)]["entries"]))

    if not by_year:
        msg = "No settlement year could be processed"
        raise StructuralError(msg)

    years = sorted(int(year) for year in by_year)
    tracker = ProvenanceTracker("ccaa_fiscal_balance")
    tracker.live(
        "by_year",
        OriginKind.SPREADSHEET,
        f"Ministerio de Hacienda - Cuadros liquidación CCAA ({years[0]}-{years[-1]})",
        index_url,
        month_end(years[-1], 12),
        "Impuestos cedidos (IRPF, IVA, IIEE) y transferencias (Fondos de Garantía, Suficiencia, "
        "Competitividad y Cooperación). Miles de euros convertidos a millones.",
    )
    return tracker.build(
        {"years": years, "latest_year": years[-1], "by_year": by_year, "coverage": COVERAGE},
        periods=years,
    )


def build_fiscal_balance_fallback(reason: str = "") -> DatasetResult:
    """Build the fiscal-balance dataset from the 2023 settlement."""
    tracker = ProvenanceTracker("ccaa_fiscal_balance")
    tracker.fallback(
        "by_year",
        "Referencia Hacienda - Liquidación CCAA 2023",
        get_source_urls("hacienda")["index_page"],
        month_end(2023, 12),
        reason or "Fallback local al no poder descargar los XLSX oficiales",
    )
    return tracker.build(REFERENCE_FISCAL_BALANCE_2023, periods=REFERENCE_FISCAL_BALANCE_2023["years"])


async def fetch_ccaa_fiscal_balance_data() -> DatasetResult:
    """Ingest the CCAA fiscal-balance dataset; never raises."""
    logger.info("=== Downloading CCAA fiscal balances (Hacienda) ===")
    return await run_with_fallback(
        "ccaa_fiscal_balance",
        _fetch_fiscal_balance_live,
        build_fiscal_balance_fallback,
    )
