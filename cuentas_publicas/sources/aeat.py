"""Tax revenue from the Agencia Tributaria (AEAT) monthly statistics.

The national series workbook carries one row per month with ~200 fixed
columns; rows are rolled up into calendar years and only complete years are
published. The delegaciones workbook gives the same concepts per regional
delegation ("D.E." columns), one row per year/month/concept.

All figures are thousands of euros in the workbooks and millions in the output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import get_source_urls, setup_logging
from cuentas_publicas.errors import IngestionError, StructuralError
from cuentas_publicas.extractor.validation import ValidationReport, validate_component_sum
from cuentas_publicas.extractor.workbook import cell_text, load_workbook_grids, read_row_values, select_sheet
from cuentas_publicas.regions import CCAA, resolve_region
from cuentas_publicas.scraper.http_client import fetch_bytes
from cuentas_publicas.transformer.aggregator import (
    AnnualAggregate,
    CompletenessAggregator,
    PeriodObservation,
    Year,
    YearMonth,
    thousands_to_millions,
)
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
    "REFERENCE_NATIONAL",
    "build_tax_revenue_fallback",
    "fetch_tax_revenue_data",
    "parse_delegaciones_sheet",
    "parse_national_sheet",
]

MIN_YEAR, MAX_YEAR = 1990, 2100
DELEGACIONES_TIMEOUT_MS = 60_000

# 0-based columns in the "Ingresos tributarios" sheet: [year, month, month name, ...]
NATIONAL_COLUMNS: dict[str, int] = {
    "total": 6,
    "irpf": 29,
    "sociedades": 65,
    "irnr": 82,
    "iva": 107,
    "iiee": 137,
    "resto": 178,
}
IIEE_COLUMNS: dict[str, int] = {
    "alcohol": 142,
    "cerveza": 147,
    "productos_intermedios": 152,
    "hidrocarburos": 157,
    "tabaco": 162,
    "electricidad": 168,
    "envases_plastico": 173,
    "carbon": 174,
    "medios_transporte": 175,
}
RESTO_COLUMNS: dict[str, int] = {
    "medioambientales": 180,
    "trafico_exterior": 183,
    "primas_seguros": 184,
    "transacciones_financieras": 185,
    "servicios_digitales": 186,
    "juego": 187,
    "tasas": 188,
}
COMPONENTS = ("irpf", "iva", "sociedades", "irnr", "iiee", "resto")

# Concept cell substring -> field, checked in order
CONCEPTS: tuple[tuple[str, str], ...] = (
    ("total ingresos netos", "total"),
    ("irpf ingresos netos", "irpf"),
    ("iva ingresos netos", "iva"),
    ("i.sociedades ingresos netos", "sociedades"),
    ("ii.ee. ingresos netos", "iiee"),
    ("irnr ingresos netos", "irnr"),
)
REGIONAL_FIELDS = ("total", "irpf", "iva", "sociedades", "iiee", "irnr")


# =============================================================================
# Reference Values
# =============================================================================

REFERENCE_NATIONAL: Mapping[str, Any] = frozen_copy(
    {
        "2024": {
            "total": 295028,
            "irpf": 129538,
            "iva": 90631,
            "sociedades": 39136,
            "irnr": 4039,
            "iiee": 22150,
            "resto": 9535,
            "iiee_breakdown": {
                "alcohol": 371,
                "cerveza": 464,
                "productos_intermedios": 24,
                "hidrocarburos": 10283,
                "tabaco": 6765,
                "electricidad": 1529,
                "envases_plastico": 393,
                "carbon": 0,
                "medios_transporte": 2321,
            },
            "resto_breakdown": {
                "medioambientales": 2103,
                "trafico_exterior": 2053,
                "primas_seguros": 1853,
                "transacciones_financieras": 0,
                "servicios_digitales": 33,
                "juego": 115,
                "tasas": 3378,
            },
        }
    }
)


# =============================================================================
# Row Helpers
# =============================================================================


def _year_month(row: Sequence[object], year_col: int, month_col: int) -> YearMonth | None:
    """Return the month of a data row, ``None`` for headers and notes."""
    year = parse_cell_number(row[year_col]) if year_col < len(row) else None
    if year is None or year != int(year) or not MIN_YEAR <= year <= MAX_YEAR:
        return None
    month = parse_cell_number(row[month_col]) if month_col < len(row) else None
    if month is None or month != int(month):
        return None
    return YearMonth(int(year), int(month))


# =============================================================================
# National Series
# =============================================================================


def parse_national_sheet(
    grid: Grid,
    report: ValidationReport | None = None,
) -> dict[str, dict[str, Any]]:
    """Aggregate the monthly national sheet into complete calendar years.

    Parameters
    ----------
    grid : Grid
        Rows of the "Ingresos tributarios" sheet.
    report : ValidationReport, optional
        Collects the per-year component-sum checks.

    Returns
    -------
    dict[str, dict[str, Any]]
        Year (string) to totals in millions of euros, with ``iiee_breakdown``
        and ``resto_breakdown`` nested.

    Raises
    ------
    StructuralError
        If no complete year was found.
    """
    columns = {**NATIONAL_COLUMNS}
    columns.update({f"iiee.{name}": col for name, col in IIEE_COLUMNS.items()})
    columns.update({f"resto.{name}": col for name, col in RESTO_COLUMNS.items()})

    aggregator = CompletenessAggregator(label="AEAT year")
    for row in grid:
        period = _year_month(row, 0, 1)
        if period is None:
            continue
        record = read_row_values(row, columns, "total")
        if record is None:
            logger.debug("AEAT %s: no positive total, row skipped", period)
            continue
        aggregator.add(Year(period.year), period.month, record)

    national: dict[str, dict[str, Any]] = {}
    for year, sums in sorted(aggregator.complete().items()):
        aggregate = AnnualAggregate(
            total=thousands_to_millions(sums["total"]),
            components={name: thousands_to_millions(sums[name]) for name in COMPONENTS},
            breakdowns={
                "iiee": {name: thousands_to_millions(sums[f"iiee.{name}"]) for name in IIEE_COLUMNS},
                "resto": {name: thousands_to_millions(sums[f"resto.{name}"]) for name in RESTO_COLUMNS},
            },
        )
        validate_component_sum(
            f"AEAT {year}: total vs IRPF+IVA+IS+IRNR+IIEE+resto",
            aggregate.total,
            aggregate.components,
            report=report,
        )
        national[str(year)] = aggregate.to_dict()

    if not national:
        msg = "No complete year in the AEAT national series"
        raise StructuralError(msg)
    return national


async def fetch_national_series(
    url: str,
    report: ValidationReport | None = None,
) -> dict[str, dict[str, Any]]:
    """Download and aggregate the national series workbook, checking each year into ``report``."""
    grids = load_workbook_grids(await fetch_bytes(url))
    sheet = select_sheet(list(grids), ["Ingresos tributarios"])
    logger.info("AEAT national series: using sheet '%s'", sheet)
    return parse_national_sheet(grids[sheet], report=report)


# =============================================================================
# Delegaciones (per CCAA)
# =============================================================================


def _match_concept(cell: object) -> str | None:
    text = str(cell or "").lower()
    for needle, name in CONCEPTS:
        if needle in text:
            return name
    return None


def _find_delegaciones_header(grid: Grid) -> int:
    for index, row in enumerate(grid[:10]):
        text = normalize_text("|".join(str(c) for c in row if c is not None))
        if "ejercicio" in text or "delegac" in text:
            return index
    return 0


def parse_delegaciones_sheet(grid: Grid) -> dict[str, dict[str, list[dict[str, Any]]]]:
    """Aggregate the delegaciones sheet into annual figures per CCAA.

    A region is kept for a year only when its ``total`` concept was reported
    for all twelve months; other concepts follow whatever months they have.

    Returns
    -------
    dict
        ``{"2024": {"entries": [{"code", "name", "total", ...}, ...]}}``,
        entries sorted by region code.

    Raises
    ------
    StructuralError
        If the sheet is empty or has no "D.E." region columns.
    """
    if len(grid) < 2:
        msg = "Delegaciones sheet is empty"
        raise StructuralError(msg)

    header_index = _find_delegaciones_header(grid)
    header = grid[header_index]

    region_columns: dict[int, str] = {}
    positions = {"ejercicio": 0, "mes": 1, "concepto": 2}
    for col in range(len(header)):
        text = cell_text(header, col)
        label = text.lower()
        if label in ("ejercicio", "año"):
            positions["ejercicio"] = col
        elif label in ("mes", "concepto"):
            positions[label] = col
        if text.startswith("D.E."):
            region = resolve_region(text, allow_substring=True)
            if region is not None:
                region_columns[col] = region.code

    if not region_columns:
        msg = "No CCAA columns in the delegaciones header"
        raise StructuralError(msg)
    logger.info("Delegaciones: %d CCAA columns detected", len(region_columns))

    region_map = {code: col for col, code in region_columns.items()}

    # One aggregator per concept, grouped by (year, region)
    aggregators = {name: CompletenessAggregator(label=f"Delegaciones {name}") for name in REGIONAL_FIELDS}
    for row in grid[header_index + 1 :]:
        if not row:
            continue
        period = _year_month(row, positions["ejercicio"], positions["mes"])
        if period is None:
            continue
        concept = _match_concept(row[positions["concepto"]] if positions["concepto"] < len(row) else None)
        if concept is None:
            continue
        values = read_row_values(row, region_map)
        for code, value in values.items():
            aggregators[concept].observe(PeriodObservation(period, value), group=(Year(period.year), code))

    totals = aggregators["total"]
    by_year: dict[Year, list[dict[str, Any]]] = {}
    for year, code in sorted(totals.complete()):
        entry: dict[str, Any] = {"code": code, "name": CCAA[code].name}
        for name in REGIONAL_FIELDS:
            sums = aggregators[name].sums((year, code))
            entry[name] = thousands_to_millions(sums.get("value", 0.0))
        by_year.setdefault(year, []).append(entry)

    ccaa = {str(year): {"entries": entries} for year, entries in sorted(by_year.items())}
    for year, section in ccaa.items():
        logger.info("Delegaciones %s: %d regions", year, len(section["entries"]))
    return ccaa


async def fetch_delegaciones(url: str) -> dict[str, dict[str, list[dict[str, Any]]]]:
    """Download and aggregate the delegaciones workbook."""
    grids = load_workbook_grids(await fetch_bytes(url, timeout_ms=DELEGACIONES_TIMEOUT_MS))
    sheet = select_sheet(list(grids), ["datos_delegaciones", "delegac"])
    logger.info("AEAT delegaciones: using sheet '%s'", sheet)
    return parse_delegaciones_sheet(grids[sheet])


# =============================================================================
# Dataset
# =============================================================================


def _years_of(national: Mapping[str, Any]) -> list[int]:
    return sorted(int(year) for year in national)


async def _fetch_tax_revenue_live() -> DatasetResult:
    urls = get_source_urls("aeat")
    tracker = ProvenanceTracker("tax_revenue")
    report = ValidationReport()

    try:
        national: Mapping[str, Any] = await fetch_national_series(urls["series_xlsx"], report=report)
        years = _years_of(national)
        note = "Series mensuales agregadas anualmente, miles de euros -> millones"
        if report.has_failures():
            logger.warning(
                "AEAT national series: %d year(s) whose components miss the total",
                len(report.diagnostics),
            )
            note += f"; {len(report.diagnostics)} discrepancias total/componentes"
        tracker.live(
            "national",
            OriginKind.SPREADSHEET,
            f"AEAT - Informe mensual de Recaudación Tributaria ({years[0]}-{years[-1]})",
            urls["series_xlsx"],
            month_end(years[-1], 12),
            note,
        )
    except IngestionError as err:
        logger.error("AEAT national series failed (%s); using reference values", err)
        national = REFERENCE_NATIONAL
        years = _years_of(national)
        tracker.fallback(
            "national",
            "Referencia AEAT - Informe mensual de Recaudación Tributaria 2024",
            urls["series_xlsx"],
            note="Datos de referencia, descarga AEAT no disponible",
        )

    try:
        ccaa: Mapping[str, Any] = await fetch_delegaciones(urls["delegaciones_xlsx"])
    except IngestionError as err:
        logger.error("AEAT delegaciones failed (%s); continuing without CCAA data", err)
        ccaa = {}

    if ccaa:
        ccaa_years = sorted(ccaa)
        tracker.live(
            "ccaa",
            OriginKind.SPREADSHEET,
            f"AEAT - Ingresos por Delegaciones ({ccaa_years[0]}-{ccaa_years[-1]})",
            urls["delegaciones_xlsx"],
            month_end(int(ccaa_years[-1]), 12),
            "Ingresos netos por Delegación Especial, miles de euros -> millones",
        )
    else:
        tracker.fallback("ccaa", "Sin datos CCAA disponibles", urls["delegaciones_xlsx"])

    latest = years[-1]
    latest_entry = national[str(latest)]
    logger.info(
        "Tax revenue %d: total %s M EUR (IRPF %s, IVA %s, IS %s)",
        latest,
        f"{latest_entry['total']:,.0f}",
        f"{latest_entry['irpf']:,.0f}",
        f"{latest_entry['iva']:,.0f}",
        f"{latest_entry['sociedades']:,.0f}",
    )
    return tracker.build(
        {
            "years": years,
            "latest_year": latest,
            "national": national,
            "ccaa": ccaa,
            "validation": report.diagnostics,
        },
        periods=years,
    )


def build_tax_revenue_fallback(reason: str = "") -> DatasetResult:
    """Build the tax-revenue dataset from :data:`REFERENCE_NATIONAL` with no CCAA section."""
    urls = get_source_urls("aeat")
    tracker = ProvenanceTracker("tax_revenue")
    tracker.fallback(
        "national",
        "Referencia AEAT - Informe mensual de Recaudación Tributaria 2024",
        urls["series_xlsx"],
        note=reason or "Datos de referencia, descarga AEAT no disponible",
    )
    tracker.fallback("ccaa", "Sin datos CCAA disponibles", urls["delegaciones_xlsx"])
    years = _years_of(REFERENCE_NATIONAL)
    return tracker.build(
        {
            "years": years,
            "latest_year": years[-1],
            "national": REFERENCE_NATIONAL,
            "ccaa": {},
            "validation": [],
        },
        periods=years,
    )


async def fetch_tax_revenue_data() -> DatasetResult:
    """Ingest the tax-revenue dataset; never raises."""
    logger.info("=== Downloading tax revenue data (AEAT) ===")
    return await run_with_fallback("tax_revenue", _fetch_tax_revenue_live, build_tax_revenue_fallback)
