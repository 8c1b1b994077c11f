"""Demographic and macro indicators from the INE Tempus API.

Each indicator is a separate ``DATOS_SERIE`` request and falls back on its
own: one failing series never drags the others into reference values.

Series
------
ECP320      Resident population, total national.
EPA387794   Labour-force survey, active population (thousands).
CNTR6597    Quarterly GDP at current prices, seasonally adjusted (millions).
EAES741     Annual wage structure survey, mean gross salary.
IPC278296   CPI annual average (base 2021 = 100).
IPC290750   CPI monthly year-over-year variation, used to extend the index back.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import get_source_urls, setup_logging
from cuentas_publicas.errors import IngestionError, StructuralError, check_range
from cuentas_publicas.scraper.http_client import fetch_json
from cuentas_publicas.transformer.provenance import (
    DatasetResult,
    OriginKind,
    ProvenanceRecord,
    ProvenanceTracker,
    frozen_copy,
    run_with_fallback,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

logger = setup_logging(__name__)

__all__ = [
    "REFERENCE_DEMOGRAPHICS",
    "build_demographics_fallback",
    "fetch_demographics_data",
    "fetch_series",
    "rebuild_cpi_index",
]

SERIES_TIMEOUT_MS = 15_000
CPI_TARGET_START = 1995
CPI_PREFERRED_BASE = 2024

TABLE_URLS = {
    "population": "https://www.ine.es/jaxiT3/Tabla.htm?t=56934",
    "active_population": "https://www.ine.es/jaxiT3/Tabla.htm?t=65080",
    "gdp": "https://www.ine.es/jaxiT3/Tabla.htm?t=30679",
    "average_salary": "https://www.ine.es/jaxiT3/Tabla.htm?t=28191",
    "cpi": "https://www.ine.es/jaxiT3/Tabla.htm?t=50902",
}
SMI_URL = "https://www.boe.es/boe/dias/2026/02/18/pdfs/BOE-A-2026-3456.pdf"


# =============================================================================
# Reference Values
# =============================================================================

REFERENCE_DEMOGRAPHICS: Mapping[str, Any] = frozen_copy(
    {
        "population": 49_570_725,
        "active_population": 24_940_400,
        "gdp": 1_686_000_000_000,
        "average_salary": 28_050,
        "smi": 1_221,
        "cpi": {
            "base_year": 2024,
            "by_year": {
                "1995": 55.07, "1996": 57.01, "1997": 58.14, "1998": 59.22,
                "1999": 60.58, "2000": 62.65, "2001": 64.91, "2002": 67.14,
                "2003": 69.17, "2004": 71.27, "2005": 73.67, "2006": 76.28,
                "2007": 78.41, "2008": 81.63, "2009": 81.40, "2010": 82.73,
                "2011": 85.29, "2012": 87.38, "2013": 88.54, "2014": 88.40,
                "2015": 87.96, "2016": 87.66, "2017": 89.40, "2018": 90.93,
                "2019": 91.58, "2020": 91.27, "2021": 100.00, "2022": 108.40,
                "2023": 112.15, "2024": 115.60,
            },
        },
    }
)

FALLBACK_LABELS: dict[str, tuple[str, str, str]] = {
    "population": ("Valor referencia ene 2026 (INE)", TABLE_URLS["population"], "Cifras de Población ene 2026"),
    "active_population": ("Valor referencia Q3 2025 (INE EPA)", TABLE_URLS["active_population"], "Población activa Q3 2025"),
    "gdp": ("Valor referencia 2025 (countryeconomy.com)", "https://countryeconomy.com/gdp/spain", "PIB nominal 2025"),
    "average_salary": ("Valor referencia 2022 (INE EAES)", TABLE_URLS["average_salary"], "Salario medio anual bruto 2022"),
    "smi": ("BOE - Salario Mínimo Interprofesional 2026", SMI_URL, "SMI 2026: 1.221 EUR/mes (17.094 EUR/14 pagas)"),
    "cpi": ("Valores referencia IPC (INE)", TABLE_URLS["cpi"], "IPC base 2021=100, valores de referencia"),
}


# =============================================================================
# Series Access
# =============================================================================


@dataclass(frozen=True)
class SeriesPoint:
    """One Tempus data point."""

    day: date
    value: float


def _point_date(raw: object) -> date:
    """Tempus ``Fecha`` is epoch milliseconds."""
    return datetime.fromtimestamp(int(raw) / 1000, UTC).date()


async def fetch_series(code: str, last: int = 1) -> list[SeriesPoint]:
    """Fetch the ``last`` most recent points of a Tempus series, oldest first.

    Points with a null value are skipped.

    Raises
    ------
    StructuralError
        If the response carries no usable data points.
    """
    url = get_source_urls("ine")["series_api"].format(code=code)
    payload = await fetch_json(
        url,
        params={"nult": last},
        headers={"Accept": "application/json"},
        timeout_ms=SERIES_TIMEOUT_MS,
    )
    raw_points = (payload.get("Data") or payload.get("data") or []) if isinstance(payload, dict) else []
    try:
        points = [
            SeriesPoint(_point_date(p["Fecha"]), float(p["Valor"]))
            for p in raw_points
            if isinstance(p, dict) and p.get("Valor") is not None and p.get("Fecha") is not None
        ]
    except (KeyError, OverflowError, TypeError, ValueError) as err:
        msg = f"Malformed data point in INE series {code}: {err}"
        raise StructuralError(msg) from err
    if not points:
        msg = f"No data points in INE series {code}"
        raise StructuralError(msg)
    logger.debug("INE %s: %d points (%s - %s)", code, len(points), points[0].day, points[-1].day)
    return points


# =============================================================================
# Indicators
# =============================================================================


@dataclass(frozen=True)
class Indicator:
    """A live indicator value with the record describing where it came from."""

    value: Any
    record: ProvenanceRecord


async def fetch_population() -> Indicator:
    latest = (await fetch_series("ECP320", 3))[-1]
    value = round(check_range("population", latest.value, 40_000_000, 60_000_000))
    return Indicator(
        value,
        ProvenanceRecord(OriginKind.API, "INE - Cifras de Población (serie ECP320)", TABLE_URLS["population"], latest.day),
    )


async def fetch_active_population() -> Indicator:
    latest = (await fetch_series("EPA387794", 3))[-1]
    value = round(check_range("active_population", latest.value * 1000, 15_000_000, 35_000_000))
    return Indicator(
        value,
        ProvenanceRecord(OriginKind.API, "INE - EPA (serie EPA387794)", TABLE_URLS["active_population"], latest.day),
    )


async def fetch_gdp() -> Indicator:
    """Annual GDP as the sum of the four most recent quarters, in euros."""
    last_four = (await fetch_series("CNTR6597", 8))[-4:]
    if len(last_four) < 4:
        msg = f"Only {len(last_four)} GDP quarters available (need 4)"
        raise StructuralError(msg)
    value = round(check_range("gdp", sum(p.value for p in last_four) * 1_000_000, 1e12, 3e12))
    return Indicator(
        value,
        ProvenanceRecord(
            OriginKind.API,
            "INE - Contabilidad Nacional Trimestral (serie CNTR6597)",
            TABLE_URLS["gdp"],
            last_four[-1].day,
            f"Suma 4 trimestres: {last_four[0].day} a {last_four[-1].day}",
        ),
    )


async def fetch_average_salary() -> Indicator:
    latest = (await fetch_series("EAES741", 5))[-1]
    value = round(check_range("average_salary", latest.value, 15_000, 100_000))
    return Indicator(
        value,
        ProvenanceRecord(
            OriginKind.API,
            "INE - Encuesta Anual Estructura Salarial (serie EAES741)",
            TABLE_URLS["average_salary"],
            latest.day,
        ),
    )


def rebuild_cpi_index(
    annual_index: Mapping[int, float],
    monthly_variation: Mapping[int, list[float]],
    target_start: int = CPI_TARGET_START,
) -> dict[int, float]:
    """Extend an annual CPI index backwards using yearly mean variations.

    ``index[y] = index[y + 1] / (1 + mean_variation[y + 1] / 100)``, walking
    back from the earliest direct value until ``target_start`` or until a
    year is missing.

    Examples
    --------
    >>> rebuild_cpi_index({2002: 102.0}, {2002: [2.0, 2.0]}, target_start=2001)
    {2002: 102.0, 2001: 100.0}
    """
    index = dict(annual_index)
    if not index:
        return index

    averages = {year: sum(values) / len(values) for year, values in monthly_variation.items() if values}
    year = min(index) - 1
    while year >= target_start:
        variation = averages.get(year + 1)
        if variation is None:
            logger.warning("CPI %d: cannot rebuild (no variation data for %d)", year, year + 1)
            break
        index[year] = index[year + 1] / (1 + variation / 100)
        year -= 1
    return index


async def fetch_cpi() -> Indicator:
    annual_points, variation_points = await asyncio.gather(
        fetch_series("IPC278296", 40),
        fetch_series("IPC290750", 800),
        return_exceptions=True,
    )
    if isinstance(annual_points, BaseException):
        raise annual_points
    if isinstance(variation_points, BaseException):
        logger.warning("CPI variation series unavailable: %s", variation_points)
        variation_points = []

    annual = {point.day.year: point.value for point in annual_points}
    variations: dict[int, list[float]] = {}
    for point in variation_points:
        variations.setdefault(point.day.year, []).append(point.value)

    by_year = rebuild_cpi_index(annual, variations)
    years = sorted(by_year)
    base_year = CPI_PREFERRED_BASE if CPI_PREFERRED_BASE in by_year else years[-1]
    return Indicator(
        {"base_year": base_year, "by_year": {str(y): round(by_year[y], 2) for y in years}},
        ProvenanceRecord(
            OriginKind.API,
            "INE - Índice de Precios al Consumo (series IPC278296 + IPC290750)",
            TABLE_URLS["cpi"],
            date(years[-1], 12, 31),
            f"IPC base 2021=100, {len(years)} años ({years[0]}-{years[-1]})",
        ),
    )


# =============================================================================
# Dataset
# =============================================================================

INDICATORS: dict[str, Callable[[], Awaitable[Indicator]]] = {
    "population": fetch_population,
    "active_population": fetch_active_population,
    "gdp": fetch_gdp,
    "average_salary": fetch_average_salary,
    "cpi": fetch_cpi,
}


def _record_fallback(tracker: ProvenanceTracker, name: str, reason: str | None = None) -> None:
    label, url, note = FALLBACK_LABELS[name]
    tracker.fallback(name, label, url, note=f"{note} ({reason})" if reason else note)


async def _fetch_demographics_live() -> DatasetResult:
    tracker = ProvenanceTracker("demographics")
    names = list(INDICATORS)
    outcomes = await asyncio.gather(*(INDICATORS[name]() for name in names), return_exceptions=True)

    data: dict[str, Any] = {}
    for name, outcome in zip(names, outcomes, strict=True):
        if isinstance(outcome, Indicator):
            data[name] = outcome.value
            tracker.add(name, outcome.record)
            logger.info("INE %s: %s", name, outcome.value if name != "cpi" else f"{len(outcome.value['by_year'])} years")
        elif isinstance(outcome, IngestionError):
            logger.warning("INE %s failed (%s); using reference value", name, outcome)
            data[name] = REFERENCE_DEMOGRAPHICS[name]
            _record_fallback(tracker, name, str(outcome))
        else:
            raise outcome

    data["smi"] = REFERENCE_DEMOGRAPHICS["smi"]
    _record_fallback(tracker, "smi")

    if all(tracker.records[name].is_fallback for name in names):
        msg = "Every INE series failed"
        raise StructuralError(msg)
    return tracker.build(data)


def build_demographics_fallback(reason: str = "") -> DatasetResult:
    """Build the demographics dataset from :data:`REFERENCE_DEMOGRAPHICS`."""
    tracker = ProvenanceTracker("demographics")
    for name in (*INDICATORS, "smi"):
        _record_fallback(tracker, name, reason or None)
    return tracker.build(REFERENCE_DEMOGRAPHICS)


async def fetch_demographics_data() -> DatasetResult:
    """Ingest the demographics dataset; never raises."""
    logger.info("=== Downloading demographics (INE) ===")
    return await run_with_fallback("demographics", _fetch_demographics_live, build_demographics_fallback)
