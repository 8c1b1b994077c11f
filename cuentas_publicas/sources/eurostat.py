"""EU comparison indicators and Spanish revenue series from Eurostat.

Both datasets come from the dissemination API, which answers in JSON-stat 2.0.
Each indicator is one request and falls back on its own.

* ``eurostat``: latest value per country for five headline indicators.
* ``revenue``: Spanish general-government revenue and expenditure since 1995.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import get_source_urls, setup_logging
from cuentas_publicas.errors import IngestionError, StructuralError
from cuentas_publicas.extractor.cube import JsonStatCube
from cuentas_publicas.scraper.http_client import fetch_json
from cuentas_publicas.transformer.provenance import (
    DatasetResult,
    OriginKind,
    ProvenanceTracker,
    frozen_copy,
    run_with_fallback,
)
from cuentas_publicas.utils.dates import month_end

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = setup_logging(__name__)

__all__ = [
    "COUNTRIES",
    "INDICATORS",
    "REFERENCE_INDICATORS",
    "REFERENCE_REVENUE",
    "REVENUE_INDICATORS",
    "build_eurostat_fallback",
    "build_revenue_fallback",
    "combine_revenue",
    "decode_indicator",
    "decode_revenue_series",
    "fetch_eurostat_data",
    "fetch_revenue_data",
]

REQUEST_TIMEOUT_MS = 20_000
REQUEST_RETRIES = 1
REVENUE_SINCE = 1995
DATABROWSER_URL = "https://ec.europa.eu/eurostat/databrowser/"
REVENUE_URL = "https://ec.europa.eu/eurostat/databrowser/view/gov_10a_main/"

COUNTRIES = ("ES", "DE", "FR", "IT", "PT", "EL", "NL", "EU27_2020")
COUNTRY_NAMES = {
    "ES": "España",
    "DE": "Alemania",
    "FR": "Francia",
    "IT": "Italia",
    "PT": "Portugal",
    "EL": "Grecia",
    "NL": "Países Bajos",
    "EU27_2020": "UE-27",
}


@dataclass(frozen=True)
class IndicatorSpec:
    """One Eurostat query: dataset plus fixed dimension filters."""

    dataset: str
    params: Mapping[str, str]
    label: str
    unit: str


INDICATORS: dict[str, IndicatorSpec] = {
    "debt_to_gdp": IndicatorSpec(
        "gov_10dd_edpt1",
        {"freq": "A", "unit": "PC_GDP", "sector": "S13", "na_item": "GD"},
        "Deuda/PIB",
        "% del PIB",
    ),
    "deficit": IndicatorSpec(
        "gov_10dd_edpt1",
        {"freq": "A", "unit": "PC_GDP", "sector": "S13", "na_item": "B9"},
        "Déficit/superávit",
        "% del PIB",
    ),
    "expenditure_to_gdp": IndicatorSpec(
        "gov_10a_main",
        {"freq": "A", "unit": "PC_GDP", "sector": "S13", "na_item": "TE"},
        "Gasto público/PIB",
        "% del PIB",
    ),
    "social_spending_to_gdp": IndicatorSpec(
        "gov_10a_exp",
        {"freq": "A", "unit": "PC_GDP", "sector": "S13", "cofog99": "GF10", "na_item": "TE"},
        "Gasto social/PIB",
        "% del PIB",
    ),
    "unemployment_rate": IndicatorSpec(
        "une_rt_a",
        {"freq": "A", "sex": "T", "age": "Y15-74", "unit": "PC_ACT"},
        "Tasa de paro",
        "%",
    ),
}


def _revenue_spec(na_item: str, label: str) -> IndicatorSpec:
    return IndicatorSpec("gov_10a_main", {"freq": "A", "unit": "MIO_EUR", "sector": "S13", "na_item": na_item}, label, "M€")


REVENUE_INDICATORS: dict[str, IndicatorSpec] = {
    "total_revenue": _revenue_spec("TR", "Ingresos totales"),
    "total_expenditure": _revenue_spec("TE", "Gastos totales"),
    "balance": _revenue_spec("B9", "Déficit/superávit"),
    "taxes_indirect": _revenue_spec("D2REC", "Impuestos indirectos"),
    "taxes_direct": _revenue_spec("D5REC", "Impuestos directos"),
    "social_contributions": _revenue_spec("D61REC", "Cotizaciones sociales"),
}
REVENUE_COMPONENTS = ("taxes_indirect", "taxes_direct", "social_contributions")


# =============================================================================
# Reference Values
# =============================================================================

REFERENCE_YEAR = 2023
REFERENCE_INDICATORS: Mapping[str, Mapping[str, float]] = frozen_copy(
    {
        "debt_to_gdp": {"ES": 107.7, "DE": 63.6, "FR": 110.6, "IT": 137.3, "PT": 99.1, "EL": 161.9, "NL": 46.5, "EU27_2020": 81.7},
        "deficit": {"ES": -3.6, "DE": -2.1, "FR": -5.5, "IT": -7.4, "PT": -1.2, "EL": -1.6, "NL": -0.3, "EU27_2020": -3.5},
        "expenditure_to_gdp": {"ES": 46.5, "DE": 49.0, "FR": 57.3, "IT": 56.2, "PT": 44.3, "EL": 50.6, "NL": 43.5, "EU27_2020": 49.3},
        "social_spending_to_gdp": {"ES": 18.6, "DE": 21.6, "FR": 24.0, "IT": 23.2, "PT": 16.3, "EL": 20.2, "NL": 15.4, "EU27_2020": 20.2},
        "unemployment_rate": {"ES": 12.1, "DE": 3.0, "FR": 7.3, "IT": 7.6, "PT": 6.5, "EL": 11.1, "NL": 3.6, "EU27_2020": 6.0},
    }
)

REFERENCE_REVENUE: Mapping[str, Any] = frozen_copy(
    {
        "latest_year": 2024,
        "years": [2024],
        "by_year": {
            "2024": {
                "total_revenue": 673734,
                "total_expenditure": 725001,
                "balance": -8218,
                "taxes_indirect": 176937,
                "taxes_direct": 198711,
                "social_contributions": 210337,
                "other_revenue": 87749,
            }
        },
    }
)


def _indicator_meta(specs: Mapping[str, IndicatorSpec]) -> dict[str, dict[str, str]]:
    return {key: {"label": spec.label, "unit": spec.unit} for key, spec in specs.items()}


# =============================================================================
# Requests and Decoding
# =============================================================================


async def _fetch_cube(spec: IndicatorSpec, extra: Mapping[str, Any]) -> JsonStatCube:
    url = f"{get_source_urls('eurostat')['api_base']}/{spec.dataset}"
    payload = await fetch_json(
        url,
        params={**spec.params, **extra},
        max_retries=REQUEST_RETRIES,
        timeout_ms=REQUEST_TIMEOUT_MS,
    )
    if not isinstance(payload, dict):
        msg = f"{spec.dataset}: response is not a JSON object"
        raise StructuralError(msg)
    return JsonStatCube.from_payload(payload)


def decode_indicator(cube: JsonStatCube, countries: tuple[str, ...] = COUNTRIES) -> tuple[dict[str, float], int]:
    """Return the latest value per country (1 decimal) and the newest year used.

    Countries absent from the cube or without data in the lookback window are
    omitted.

    Raises
    ------
    StructuralError
        If no country has a value.
    """
    present = [c for c in countries if c in cube.indexes.get("geo", {})]
    observations = cube.decode_latest(present)
    if not observations:
        msg = "No country has a value within the lookback window"
        raise StructuralError(msg)
    values = {code: round(obs.value, 1) for code, obs in observations.items()}
    year = max(int(obs.period[:4]) for obs in observations.values())
    return values, year


def decode_revenue_series(cube: JsonStatCube, country: str = "ES") -> dict[int, float]:
    """Return ``{year: value}`` (rounded to whole millions) for one country, ascending."""
    series = {int(period[:4]): round(value) for period, value in cube.series(country).items() if period[:4].isdigit()}
    if not series:
        msg = f"No revenue observations for {country}"
        raise StructuralError(msg)
    return dict(sorted(series.items()))


# =============================================================================
# EU Comparison Dataset
# =============================================================================


async def _fetch_indicator(spec: IndicatorSpec) -> tuple[dict[str, float], int]:
    current_year = datetime.now(UTC).year
    cube = await _fetch_cube(
        spec,
        {"geo": list(COUNTRIES), "sinceTimePeriod": str(current_year - 3), "untilTimePeriod": str(current_year)},
    )
    return decode_indicator(cube)


async def _fetch_eurostat_live() -> DatasetResult:
    tracker = ProvenanceTracker("eurostat")
    keys = list(INDICATORS)
    outcomes = await asyncio.gather(*(_fetch_indicator(INDICATORS[k]) for k in keys), return_exceptions=True)

    indicators: dict[str, Any] = {}
    latest_year = 0
    for key, outcome in zip(keys, outcomes, strict=True):
        if isinstance(outcome, IngestionError):
            logger.warning("Eurostat %s: using reference values (%s)", key, outcome)
            indicators[key] = REFERENCE_INDICATORS[key]
            tracker.fallback(key, "Eurostat (referencia)", DATABROWSER_URL, month_end(REFERENCE_YEAR, 12), str(outcome))
            continue
        if isinstance(outcome, BaseException):
            raise outcome
        values, year = outcome
        indicators[key] = values
        latest_year = max(latest_year, year)
        tracker.live(key, OriginKind.API, "Eurostat", DATABROWSER_URL, month_end(year, 12), INDICATORS[key].dataset)
        logger.info("Eurostat %s: year %d, %d countries", key, year, len(values))

    year = latest_year or REFERENCE_YEAR
    return tracker.build(
        {
            "year": year,
            "countries": list(COUNTRIES),
            "country_names": COUNTRY_NAMES,
            "indicators": indicators,
            "indicator_meta": _indicator_meta(INDICATORS),
        },
        periods=[year],
    )


def build_eurostat_fallback(reason: str = "") -> DatasetResult:
    """Build the comparison dataset from :data:`REFERENCE_INDICATORS`."""
    tracker = ProvenanceTracker("eurostat")
    for key in INDICATORS:
        tracker.fallback(key, "Eurostat (referencia)", DATABROWSER_URL, month_end(REFERENCE_YEAR, 12), reason or None)
    return tracker.build(
        {
            "year": REFERENCE_YEAR,
            "countries": list(COUNTRIES),
            "country_names": COUNTRY_NAMES,
            "indicators": REFERENCE_INDICATORS,
            "indicator_meta": _indicator_meta(INDICATORS),
        },
        periods=[REFERENCE_YEAR],
    )


async def fetch_eurostat_data() -> DatasetResult:
    """Ingest the EU comparison dataset; never raises."""
    logger.info("=== Downloading Eurostat comparison data ===")
    return await run_with_fallback("eurostat", _fetch_eurostat_live, build_eurostat_fallback)


# =============================================================================
# Revenue Dataset
# =============================================================================


async def _fetch_revenue_series(spec: IndicatorSpec) -> dict[int, float]:
    cube = await _fetch_cube(spec, {"geo": "ES", "sinceTimePeriod": str(REVENUE_SINCE)})
    return decode_revenue_series(cube)


def combine_revenue(
    series: Mapping[str, Mapping[int, float]],
    reference: Mapping[str, Mapping[str, float]] | None = None,
) -> dict[str, dict[str, float | None]]:
    """Merge per-indicator series into per-year records.

    A year is kept when it has total revenue or total expenditure. Gaps inside
    a fetched series read as 0. An indicator missing from ``series`` takes its
    value from ``reference`` (keyed by year string) for the years it covers and
    is ``None`` for the rest. ``other_revenue`` is total revenue minus the three
    named components: 0 when total revenue is 0, ``None`` when any input is
    ``None``.
    """
    substitutes = reference or {}
    years = sorted({year for values in series.values() for year in values})
    by_year: dict[str, dict[str, float | None]] = {}
    for year in years:
        revenue = series.get("total_revenue", {}).get(year)
        expenditure = series.get("total_expenditure", {}).get(year)
        if revenue is None and expenditure is None:
            continue
        reference_year = substitutes.get(str(year), {})
        record: dict[str, float | None] = {
            key: series[key].get(year, 0) if key in series else reference_year.get(key)
            for key in REVENUE_INDICATORS
        }
        total = record["total_revenue"]
        components = [record[name] for name in REVENUE_COMPONENTS]
        if total is None or None in components:
            record["other_revenue"] = None
        else:
            record["other_revenue"] = total - sum(components) if total else 0
        by_year[str(year)] = record
    return by_year


async def _fetch_revenue_live() -> DatasetResult:
    tracker = ProvenanceTracker("revenue")
    keys = list(REVENUE_INDICATORS)
    outcomes = await asyncio.gather(
        *(_fetch_revenue_series(REVENUE_INDICATORS[k]) for k in keys),
        return_exceptions=True,
    )

    series: dict[str, dict[int, float]] = {}
    for key, outcome in zip(keys, outcomes, strict=True):
        if isinstance(outcome, IngestionError):
            logger.warning("Eurostat revenue %s unavailable (%s)", key, outcome)
            continue
        if isinstance(outcome, BaseException):
            raise outcome
        series[key] = outcome
        logger.info("Eurostat revenue %s: %d years", key, len(outcome))

    reference = REFERENCE_REVENUE["by_year"]
    by_year = combine_revenue(series, reference)
    if not by_year:
        msg = "No revenue year has total revenue or expenditure"
        raise StructuralError(msg)

    years = sorted(int(year) for year in by_year)
    for key in keys:
        if key in series:
            tracker.live(key, OriginKind.API, "Eurostat", REVENUE_URL, month_end(max(series[key]), 12))
            continue
        # Substituted years get their own record; other years hold null
        for year in by_year:
            if by_year[year][key] is not None:
                tracker.fallback(
                    f"{key}.{year}",
                    "Eurostat (referencia)",
                    REVENUE_URL,
                    month_end(int(year), 12),
                    "Serie no disponible; valor de referencia",
                )
        missing = [year for year in by_year if by_year[year][key] is None]
        if missing:
            logger.warning("Eurostat revenue %s: no value for %s", key, ", ".join(missing))
    tracker.derived("other_revenue", ["total_revenue", *REVENUE_COMPONENTS])

    return tracker.build(
        {
            "latest_year": years[-1],
            "years": years,
            "by_year": by_year,
            "indicator_meta": _indicator_meta(REVENUE_INDICATORS),
        },
        periods=years,
    )


def build_revenue_fallback(reason: str = "") -> DatasetResult:
    """Build the revenue dataset from :data:`REFERENCE_REVENUE`."""
    tracker = ProvenanceTracker("revenue")
    for key in REVENUE_INDICATORS:
        tracker.fallback(key, "Eurostat (referencia)", REVENUE_URL, date(REFERENCE_REVENUE["latest_year"], 12, 31), reason or None)
    tracker.derived("other_revenue", ["total_revenue", *REVENUE_COMPONENTS])
    return tracker.build(
        {**REFERENCE_REVENUE, "indicator_meta": _indicator_meta(REVENUE_INDICATORS)},
        periods=REFERENCE_REVENUE["years"],
    )


async def fetch_revenue_data() -> DatasetResult:
    """Ingest the Spanish revenue series; never raises."""
    logger.info("=== Downloading revenue/expenditure series (Eurostat gov_10a_main) ===")
    return await run_with_fallback("revenue", _fetch_revenue_live, build_revenue_fallback)
