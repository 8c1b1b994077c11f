"""Public debt from Banco de España (BdE).

Two datasets come from the central bank's transposed CSV downloads:

* ``debt``: general-government debt (excessive-deficit-procedure definition)
  with its subsector split, debt/GDP ratio, year-over-year change and a linear
  trend used for the live counter.
* ``ccaa_debt``: debt per autonomous community, absolute and as % of regional GDP.

Units
-----
Debt CSVs are in thousands of euros and are converted to euros here. The REST
API reports millions of euros.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import get_source_urls, setup_logging
from cuentas_publicas.errors import IngestionError, StructuralError
from cuentas_publicas.extractor.delimited import (
    alias_suffix_columns,
    build_column_map,
    latest_nonzero,
    parse_transposed_csv,
)
from cuentas_publicas.regions import CCAA
from cuentas_publicas.scraper.http_client import fetch_json, fetch_text
from cuentas_publicas.transformer.aggregator import YearQuarter
from cuentas_publicas.transformer.provenance import (
    DatasetResult,
    OriginKind,
    ProvenanceTracker,
    frozen_copy,
    run_with_fallback,
    try_candidates,
)
from cuentas_publicas.transformer.regression import linear_regression
from cuentas_publicas.utils.dates import epoch_ms, to_iso_date

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = setup_logging(__name__)

__all__ = [
    "REFERENCE_CCAA_DEBT",
    "REFERENCE_DEBT",
    "DebtSeries",
    "build_ccaa_debt_fallback",
    "build_debt_fallback",
    "decode_api_latest",
    "decode_ccaa_table",
    "decode_debt_table",
    "fetch_ccaa_debt_data",
    "fetch_debt_data",
]

THOUSANDS = 1000
REGRESSION_WINDOW = 24
PGE_URL = "https://www.sepg.pap.hacienda.gob.es/sitios/sepg/es-ES/Presupuestos/PGE/Paginas/PGE2025.aspx"

# Field -> description tokens, narrowest first
DEBT_COLUMNS: dict[str, tuple[str, ...]] = {
    "total": ("aapp", "deuda pde", "total"),
    "estado": ("estado", "deuda pde", "total"),
    "ccaa": ("ccaa", "deuda pde"),
    "ccll": ("ccll", "deuda pde"),
    "ss": ("seguridad social", "deuda"),
    "pib": ("pib",),
}
SUBSECTORS = ("estado", "ccaa", "ccll", "ss")

# be1309/be1310 alias suffix -> INE region code; suffix 1 is the CCAA total
CCAA_TOTAL_SUFFIX = 1
CCAA_SUFFIXES: dict[int, str] = {
    2: "CA01",  # Andalucía
    3: "CA02",  # Aragón
    4: "CA03",  # Asturias
    5: "CA04",  # Baleares
    6: "CA05",  # Canarias
    7: "CA06",  # Cantabria
    8: "CA08",  # Castilla-La Mancha
    9: "CA07",  # Castilla y León
    10: "CA09",  # Cataluña
    11: "CA11",  # Extremadura
    12: "CA12",  # Galicia
    13: "CA17",  # La Rioja
    14: "CA13",  # Madrid
    15: "CA14",  # Murcia
    16: "CA15",  # Navarra
    17: "CA16",  # País Vasco
    18: "CA10",  # C. Valenciana
}


# =============================================================================
# Reference Values
# =============================================================================

REFERENCE_INTEREST_EXPENSE = 39_000_000_000

REFERENCE_DEBT: Mapping[str, Any] = frozen_copy(
    {
        "current": {
            "total_debt": 1_635_000_000_000,
            "debt_by_subsector": {
                "estado": 1_250_000_000_000,
                "ccaa": 320_000_000_000,
                "ccll": 25_000_000_000,
                "ss": 40_000_000_000,
            },
            "debt_to_gdp": 106.8,
            "year_over_year_change": 2.1,
            "interest_expense": REFERENCE_INTEREST_EXPENSE,
        },
        "historical": [
            {"date": "2024-12-31", "total_debt": 1_621_000_000_000},
            {"date": "2025-06-30", "total_debt": 1_628_000_000_000},
            {"date": "2025-12-31", "total_debt": 1_635_000_000_000},
        ],
        # ~60.000 M EUR per year, expressed per millisecond
        "regression_slope": 60_000_000_000 / (365.25 * 24 * 60 * 60 * 1000),
    }
)

REFERENCE_CCAA_DEBT: Mapping[str, Any] = frozen_copy(
    {
        "quarter": "2025-Q3",
        "ccaa": [
            {"code": "CA01", "name": "Andalucía", "debt_absolute": 40_452_000_000, "debt_to_gdp": 18.3},
            {"code": "CA02", "name": "Aragón", "debt_absolute": 9_416_000_000, "debt_to_gdp": 18.3},
            {"code": "CA03", "name": "Asturias", "debt_absolute": 3_934_000_000, "debt_to_gdp": 12.6},
            {"code": "CA04", "name": "Illes Balears", "debt_absolute": 8_615_000_000, "debt_to_gdp": 18.5},
            {"code": "CA05", "name": "Canarias", "debt_absolute": 6_534_000_000, "debt_to_gdp": 10.8},
            {"code": "CA06", "name": "Cantabria", "debt_absolute": 3_229_000_000, "debt_to_gdp": 17.6},
            {"code": "CA07", "name": "Castilla y León", "debt_absolute": 14_523_000_000, "debt_to_gdp": 18.9},
            {"code": "CA08", "name": "Castilla-La Mancha", "debt_absolute": 16_621_000_000, "debt_to_gdp": 28.8},
            {"code": "CA09", "name": "Cataluña", "debt_absolute": 89_069_000_000, "debt_to_gdp": 28.4},
            {"code": "CA10", "name": "C. Valenciana", "debt_absolute": 62_424_000_000, "debt_to_gdp": 40.5},
            {"code": "CA11", "name": "Extremadura", "debt_absolute": 5_279_000_000, "debt_to_gdp": 19.1},
            {"code": "CA12", "name": "Galicia", "debt_absolute": 12_051_000_000, "debt_to_gdp": 14.2},
            {"code": "CA13", "name": "Madrid", "debt_absolute": 37_829_000_000, "debt_to_gdp": 11.5},
            {"code": "CA14", "name": "Murcia", "debt_absolute": 13_147_000_000, "debt_to_gdp": 29.8},
            {"code": "CA15", "name": "Navarra", "debt_absolute": 2_737_000_000, "debt_to_gdp": 9.9},
            {"code": "CA16", "name": "País Vasco", "debt_absolute": 11_191_000_000, "debt_to_gdp": 11.8},
            {"code": "CA17", "name": "La Rioja", "debt_absolute": 1_753_000_000, "debt_to_gdp": 15.2},
        ],
        "total": {"debt_absolute": 338_804_000_000, "debt_to_gdp": 20.4},
    }
)


# =============================================================================
# Decoding
# =============================================================================


@dataclass
class DebtSeries:
    """Decoded debt table.

    Attributes
    ----------
    total_debt : list[tuple[date, float]]
        Positive total-debt observations in euros, file order.
    subsectors : dict[str, float]
        Latest positive value per subsector, in euros.
    debt_to_gdp : list[tuple[date, float]]
        Debt/GDP percentage where both columns are present.
    """

    total_debt: list[tuple[date, float]] = field(default_factory=list)
    subsectors: dict[str, float] = field(default_factory=dict)
    debt_to_gdp: list[tuple[date, float]] = field(default_factory=list)


def decode_debt_table(text: str) -> DebtSeries:
    """Decode a be11b/be1101 CSV into a :class:`DebtSeries`.

    Raises
    ------
    StructuralError
        If the table is too short or has no total-debt column.
    """
    table = parse_transposed_csv(text)
    column_map = build_column_map(table, DEBT_COLUMNS)
    logger.debug("Debt column map: %s", column_map)
    if "total" not in column_map:
        msg = "No total-debt column found in debt CSV"
        raise StructuralError(msg)

    series = DebtSeries()
    for record in table.records(column_map):
        total = record.values.get("total", 0.0)
        if total > 0:
            series.total_debt.append((record.period, total * THOUSANDS))
        for name in SUBSECTORS:
            value = record.values.get(name, 0.0)
            if value > 0:
                series.subsectors[name] = value * THOUSANDS
        pib = record.values.get("pib", 0.0)
        if total > 0 and pib > 0:
            series.debt_to_gdp.append((record.period, total / pib * 100))
    return series


def decode_ccaa_table(text: str) -> tuple[dict[int, float], date | None]:
    """Decode a be1309/be1310 CSV into the latest non-zero value per alias suffix."""
    table = parse_transposed_csv(text)
    columns = alias_suffix_columns(table)
    if not columns:
        msg = "No alias suffix columns in CCAA debt CSV"
        raise StructuralError(msg)
    return latest_nonzero(table, columns)


# =============================================================================
# Debt Dataset
# =============================================================================


async def _load_debt(url: str) -> DebtSeries:
    series = decode_debt_table(await fetch_text(url))
    if not series.total_debt:
        msg = f"No total-debt observations in {url}"
        raise StructuralError(msg)
    logger.info(
        "Debt series %s: %d points (%s - %s)",
        url.rsplit("/", 1)[-1],
        len(series.total_debt),
        series.total_debt[0][0],
        series.total_debt[-1][0],
    )
    return series


def decode_api_latest(payload: Any) -> tuple[float, date | None] | None:
    """Decode the REST API response into the latest total in euros and its date.

    Returns ``None`` when no series carries a value.

    Raises
    ------
    StructuralError
        If a data point is malformed (non-numeric ``Valor``, non-object row).
    """
    for series in payload if isinstance(payload, list) else []:
        points = series.get("Datos") if isinstance(series, dict) else None
        if not points:
            continue
        try:
            latest = points[-1]
            raw_value = latest.get("Valor")
            if not raw_value:
                continue
            value = float(raw_value) * 1_000_000
        except (AttributeError, KeyError, TypeError, ValueError) as err:
            msg = f"Malformed BdE API data point in {series!r}: {err}"
            raise StructuralError(msg) from err
        observed = to_iso_date(latest.get("Fecha"))
        return value, date.fromisoformat(observed) if observed else None
    return None


async def _fetch_api_latest(url: str) -> tuple[float, date | None] | None:
    """Return the latest API value in euros and its date, or ``None`` when unusable."""
    try:
        latest = decode_api_latest(await fetch_json(url))
    except IngestionError as err:
        logger.warning("BdE API unavailable: %s", err)
        return None

    if latest is None:
        logger.warning("Could not extract a value from the BdE API response")
    return latest


async def _fetch_debt_live() -> DatasetResult:
    urls = get_source_urls("bde")
    tracker = ProvenanceTracker("debt")

    used_url, series = await try_candidates(
        "BdE debt CSV",
        [urls["debt_monthly_csv"], urls["debt_quarterly_csv"]],
        _load_debt,
    )
    csv_label = f"BdE - CSV {used_url.rsplit('/', 1)[-1].removesuffix('.csv')}"

    quarterly: DebtSeries | None = None
    if used_url == urls["debt_quarterly_csv"]:
        quarterly = series
    else:
        try:
            quarterly = await _load_debt(urls["debt_quarterly_csv"])
        except IngestionError as err:
            logger.warning("Quarterly debt CSV unavailable: %s", err)

    # Merge and de-duplicate by date, later sources win
    merged: dict[date, float] = {}
    for day, value in sorted(series.total_debt + (quarterly.total_debt if quarterly else [])):
        merged[day] = value
    historical = sorted(merged.items())
    last_date = historical[-1][0]

    total_debt = historical[-1][1]
    api_latest = await _fetch_api_latest(urls["debt_api"])
    if api_latest is not None:
        total_debt, api_date = api_latest
        tracker.live("total_debt", OriginKind.API, "BdE - API REST", urls["debt_api"], api_date or last_date)
    else:
        tracker.live("total_debt", OriginKind.DELIMITED_TEXT, csv_label, used_url, last_date)

    subsectors = series.subsectors or (quarterly.subsectors if quarterly else {})
    if subsectors:
        tracker.live("debt_by_subsector", OriginKind.DELIMITED_TEXT, csv_label, used_url, last_date)
    else:
        subsectors = dict(REFERENCE_DEBT["current"]["debt_by_subsector"])
        tracker.fallback("debt_by_subsector", "Valor referencia feb 2026", used_url)

    gdp_points = (quarterly.debt_to_gdp if quarterly else []) or series.debt_to_gdp
    if gdp_points:
        debt_to_gdp = gdp_points[-1][1]
        tracker.live(
            "debt_to_gdp",
            OriginKind.DELIMITED_TEXT,
            "BdE - CSV be1101",
            urls["debt_quarterly_csv"],
            gdp_points[-1][0],
            "Ratio deuda/PIB trimestral",
        )
    else:
        debt_to_gdp = REFERENCE_DEBT["current"]["debt_to_gdp"]
        tracker.fallback("debt_to_gdp", "Valor referencia feb 2026", note="Ratio deuda/PIB estimado")

    year_over_year = 0.0
    if len(historical) > 12:
        year_ago = historical[-13][1]
        year_over_year = (historical[-1][1] - year_ago) / year_ago * 100
    tracker.derived(
        "year_over_year_change",
        ["historical"],
        "Variación % último dato vs mismo mes año anterior",
    )

    tracker.fallback(
        "interest_expense",
        "Estimación PGE 2025",
        PGE_URL,
        note="~39.000 M€ (estimación ~2,3% coste medio)",
    )

    points = [(epoch_ms(day), value) for day, value in historical[-REGRESSION_WINDOW:]]
    fit = linear_regression(points)
    tracker.live("historical", OriginKind.DELIMITED_TEXT, csv_label, used_url, last_date)
    tracker.derived("regression", ["historical"], f"OLS sobre los últimos {len(points)} puntos")

    data = {
        "current": {
            "total_debt": total_debt,
            "debt_by_subsector": subsectors,
            "debt_to_gdp": debt_to_gdp,
            "year_over_year_change": year_over_year,
            "interest_expense": REFERENCE_INTEREST_EXPENSE,
        },
        "historical": [{"date": day.isoformat(), "total_debt": value} for day, value in historical],
        "regression": {
            "slope": fit.slope,
            "intercept": fit.intercept,
            "last_data_timestamp": points[-1][0],
            "debt_per_second": fit.slope * 1000,
        },
    }
    logger.info("Debt: %s EUR (%.2f%% GDP), %d historical points", f"{total_debt:,.0f}", debt_to_gdp, len(historical))
    return tracker.build(data, periods=[day.isoformat() for day, _ in historical])


def build_debt_fallback(reason: str = "") -> DatasetResult:
    """Build the debt dataset from :data:`REFERENCE_DEBT`."""
    logger.warning("Using reference values for debt%s", f" ({reason})" if reason else "")
    urls = get_source_urls("bde")
    tracker = ProvenanceTracker("debt")
    label = "Valor referencia feb 2026"
    for name in ("total_debt", "debt_by_subsector", "debt_to_gdp", "year_over_year_change", "historical"):
        tracker.fallback(name, label, urls["debt_monthly_csv"], note=reason or None)
    tracker.fallback("interest_expense", "Estimación PGE 2025", PGE_URL, note="~39.000 M€ (estimación PGE 2025)")

    current = REFERENCE_DEBT["current"]
    slope = REFERENCE_DEBT["regression_slope"]
    last_day = date.fromisoformat(REFERENCE_DEBT["historical"][-1]["date"])
    last_ts = epoch_ms(last_day)
    tracker.derived("regression", ["total_debt"], "Pendiente de referencia ~60.000 M€/año")

    data = {
        "current": current,
        "historical": REFERENCE_DEBT["historical"],
        "regression": {
            "slope": slope,
            "intercept": current["total_debt"] - slope * last_ts,
            "last_data_timestamp": last_ts,
            "debt_per_second": slope * 1000,
        },
    }
    return tracker.build(data, periods=[p["date"] for p in REFERENCE_DEBT["historical"]])


async def fetch_debt_data() -> DatasetResult:
    """Ingest the debt dataset; never raises."""
    logger.info("=== Downloading debt data (BdE) ===")
    return await run_with_fallback("debt", _fetch_debt_live, build_debt_fallback)


# =============================================================================
# CCAA Debt Dataset
# =============================================================================


async def _fetch_ccaa_debt_live() -> DatasetResult:
    urls = get_source_urls("bde")
    absolute, absolute_date = decode_ccaa_table(await fetch_text(urls["ccaa_debt_csv"]))
    ratio, ratio_date = decode_ccaa_table(await fetch_text(urls["ccaa_debt_gdp_csv"]))

    latest = absolute_date or ratio_date
    if latest is None:
        msg = "CCAA debt CSVs carry no data rows"
        raise StructuralError(msg)

    entries = []
    for suffix, code in CCAA_SUFFIXES.items():
        entries.append(
            {
                "code": code,
                "name": CCAA[code].name,
                "debt_absolute": absolute.get(suffix, 0.0) * THOUSANDS,
                "debt_to_gdp": ratio.get(suffix, 0.0),
            }
        )
    entries.sort(key=lambda e: e["code"])

    if CCAA_TOTAL_SUFFIX in absolute:
        total_absolute = absolute[CCAA_TOTAL_SUFFIX] * THOUSANDS
    else:
        total_absolute = sum(e["debt_absolute"] for e in entries)

    tracker = ProvenanceTracker("ccaa_debt")
    tracker.live("debt_absolute", OriginKind.DELIMITED_TEXT, "BdE - CSV be1309", urls["ccaa_debt_csv"], latest)
    tracker.live("debt_to_gdp", OriginKind.DELIMITED_TEXT, "BdE - CSV be1310", urls["ccaa_debt_gdp_csv"], latest)

    quarter = str(YearQuarter.from_month(latest.year, latest.month))
    logger.info("CCAA debt: %d regions, quarter %s, total %s EUR", len(entries), quarter, f"{total_absolute:,.0f}")
    return tracker.build(
        {
            "quarter": quarter,
            "ccaa": entries,
            "total": {"debt_absolute": total_absolute, "debt_to_gdp": ratio.get(CCAA_TOTAL_SUFFIX, 0.0)},
        },
        periods=[quarter],
    )


def build_ccaa_debt_fallback(reason: str = "") -> DatasetResult:
    """Build the CCAA debt dataset from :data:`REFERENCE_CCAA_DEBT`."""
    logger.warning("Using reference values for CCAA debt%s", f" ({reason})" if reason else "")
    urls = get_source_urls("bde")
    tracker = ProvenanceTracker("ccaa_debt")
    tracker.fallback("debt_absolute", "Valor referencia Q3 2025", urls["ccaa_debt_csv"], note="Deuda PDE CCAA")
    tracker.fallback("debt_to_gdp", "Valor referencia Q3 2025", urls["ccaa_debt_gdp_csv"], note="% del PIB regional")
    return tracker.build(REFERENCE_CCAA_DEBT, periods=[REFERENCE_CCAA_DEBT["quarter"]])


async def fetch_ccaa_debt_data() -> DatasetResult:
    """Ingest the CCAA debt dataset; never raises."""
    logger.info("=== Downloading CCAA debt data (BdE) ===")
    return await run_with_fallback("ccaa_debt", _fetch_ccaa_debt_live, build_ccaa_debt_fallback)
