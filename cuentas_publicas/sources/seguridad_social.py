"""Contributory pensions from the Seguridad Social monthly statistics.

The statistics portal publishes a ``REGYYYYMM.xlsx`` workbook (pensions by
regime and class) behind a URL that changes every month, so the index page is
scraped for the current link. Only the "Total sistema" row is read; the rest of
the dataset (Clases Pasivas payroll, affiliates, contributions, reserve fund)
comes from reference values and derived calculations.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

from cuentas_publicas.config import get_source_urls, setup_logging
from cuentas_publicas.errors import StructuralError, check_range
from cuentas_publicas.extractor.workbook import cell_text, load_workbook_grids, locate_row
from cuentas_publicas.scraper.http_client import fetch_bytes, fetch_text
from cuentas_publicas.transformer.provenance import (
    DatasetResult,
    OriginKind,
    ProvenanceTracker,
    frozen_copy,
    run_with_fallback,
)
from cuentas_publicas.transformer.regression import linear_regression
from cuentas_publicas.utils.dates import epoch_ms
from cuentas_publicas.utils.parsing import normalize_text, parse_cell_number

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from cuentas_publicas.extractor.workbook import Grid

logger = setup_logging(__name__)

__all__ = [
    "REFERENCE_PENSIONS",
    "PensionSnapshot",
    "build_pension_dataset",
    "build_pensions_fallback",
    "fetch_pensions_data",
    "find_workbook_link",
    "parse_regime_sheet",
]

PAGE_TIMEOUT_MS = 15_000
PAYMENTS_PER_YEAR = 14
SECONDS_PER_YEAR = 365.25 * 86400
PGE_URL = "https://www.sepg.pap.hacienda.gob.es/sitios/sepg/es-ES/Presupuestos/PGE/Paginas/PGE2025.aspx"

WORKBOOK_LINK = re.compile(r"""href=["']([^"']*REG\d{6}\.xlsx[^"']*)["']""", re.IGNORECASE)
ANY_XLSX_LINK = re.compile(r"""href=["']([^"']*\.xlsx[^"']*)["']""", re.IGNORECASE)
WORKBOOK_MONTH = re.compile(r"REG(\d{4})(\d{2})")

MONTH_NAMES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

# "Total sistema" row: label, then (count, monthly amount, average) per class;
# class order is total, incapacity, retirement
TOTAL_COUNT, TOTAL_PAYROLL, TOTAL_AVERAGE = 1, 2, 3
RETIREMENT_COUNT, RETIREMENT_PAYROLL, RETIREMENT_AVERAGE = 7, 8, 9


# =============================================================================
# Reference Values
# =============================================================================

REFERENCE_PENSIONS: Mapping[str, Any] = frozen_copy(
    {
        "monthly_payroll_ss": 14_250_714_014,
        "monthly_payroll_clases_pasivas": 1_659_000_000,
        "total_pensions": 10_452_674,
        "average_pension_retirement": 1_563.56,
        "affiliates": 21_300_000,
        "social_contributions": 180_000_000_000,
        "reserve_fund": 2_100_000_000,
        # Accumulated contributory deficit since 2011
        "cumulative_deficit": {"base": 300_000_000_000, "base_date": "2026-01-01"},
        "reference_date": "2026-01-31",
        "historical": [
            {"date": "2020-12-31", "monthly_payroll": 10_200_000_000, "total_pensions": 9_800_000},
            {"date": "2021-06-30", "monthly_payroll": 10_600_000_000, "total_pensions": 9_900_000},
            {"date": "2021-12-31", "monthly_payroll": 10_900_000_000, "total_pensions": 9_950_000},
            {"date": "2022-06-30", "monthly_payroll": 11_300_000_000, "total_pensions": 10_050_000},
            {"date": "2022-12-31", "monthly_payroll": 11_700_000_000, "total_pensions": 10_100_000},
            {"date": "2023-06-30", "monthly_payroll": 12_200_000_000, "total_pensions": 10_150_000},
            {"date": "2023-12-31", "monthly_payroll": 12_600_000_000, "total_pensions": 10_200_000},
            {"date": "2024-06-30", "monthly_payroll": 13_100_000_000, "total_pensions": 10_250_000},
            {"date": "2024-12-31", "monthly_payroll": 13_500_000_000, "total_pensions": 10_280_000},
            {"date": "2025-06-30", "monthly_payroll": 14_000_000_000, "total_pensions": 10_290_000},
            {"date": "2025-12-31", "monthly_payroll": 14_500_000_000, "total_pensions": 10_300_000},
        ],
    }
)


# =============================================================================
# Scraping and Parsing
# =============================================================================


@dataclass(frozen=True)
class PensionSnapshot:
    """Figures read from the "Total sistema" row of one monthly workbook."""

    as_of: date
    label: str
    url: str
    monthly_payroll_ss: float
    total_pensions: float
    average_pension: float
    retirement_pensions: float
    average_pension_retirement: float


def find_workbook_link(html: str, base_url: str) -> tuple[str, date | None]:
    """Return the absolute URL of the ``REGYYYYMM.xlsx`` link and its month.

    Raises
    ------
    StructuralError
        If the page has no such link.
    """
    match = WORKBOOK_LINK.search(html)
    if match is None:
        others = [m.group(1).split("/")[-1].split("?")[0] for m in ANY_XLSX_LINK.finditer(html)]
        logger.info("No REG*.xlsx link; %d other workbooks on page: %s", len(others), others[:5])
        msg = "No REG*.xlsx link on the pensions index page"
        raise StructuralError(msg)

    url = urljoin(base_url, match.group(1).replace("&amp;", "&"))
    month = WORKBOOK_MONTH.search(url.split("/")[-1].split("?")[0])
    as_of = date(int(month.group(1)), int(month.group(2)), 1) if month else None
    return url, as_of


def _select_regime_sheet(names: Sequence[str]) -> str:
    lowered = [(name, name.lower()) for name in names]
    for needle in ("gimen_clase", "clase"):
        for name, low in lowered:
            if needle in low:
                return name
    if len(names) > 1:
        return names[1]
    msg = f"No regime/class sheet among {list(names)}"
    raise StructuralError(msg)


def _is_total_row(row: Sequence[object]) -> bool:
    return "total sistema" in normalize_text(cell_text(row, 0))


def parse_regime_sheet(grid: Grid) -> dict[str, float]:
    """Read and range-check the "Total sistema" row.

    Raises
    ------
    StructuralError
        If the row is absent.
    RangeError
        If the pension count or monthly payroll is implausible.
    """
    index = locate_row(grid, _is_total_row)
    if index is None:
        msg = "No 'Total sistema' row in regime sheet"
        raise StructuralError(msg)
    row = grid[index]

    def value(col: int) -> float:
        number = parse_cell_number(row[col]) if col < len(row) else None
        return number if number is not None else 0.0

    total_pensions = check_range("total_pensions", value(TOTAL_COUNT), 5_000_000, 20_000_000)
    monthly_payroll = check_range("monthly_payroll", value(TOTAL_PAYROLL), 5e9, 30e9)
    return {
        "monthly_payroll_ss": round(monthly_payroll),
        "total_pensions": round(total_pensions),
        "average_pension": round(value(TOTAL_AVERAGE), 2),
        "retirement_pensions": round(value(RETIREMENT_COUNT)),
        "average_pension_retirement": round(value(RETIREMENT_AVERAGE), 2),
    }


async def fetch_snapshot() -> PensionSnapshot:
    """Scrape the index page, download the current workbook and parse it."""
    urls = get_source_urls("seguridad_social")
    html = await fetch_text(
        urls["index_page"],
        headers={"Accept": "text/html"},
        timeout_ms=PAGE_TIMEOUT_MS,
    )
    workbook_url, as_of = find_workbook_link(html, urls["base_url"])
    as_of = as_of or date.today()
    label = f"{MONTH_NAMES[as_of.month - 1]} {as_of.year}"
    logger.info("Pensions workbook for %s: %s", label, workbook_url.split("/")[-1].split("?")[0])

    grids = load_workbook_grids(await fetch_bytes(workbook_url, timeout_ms=PAGE_TIMEOUT_MS))
    sheet = _select_regime_sheet(list(grids))
    logger.info("Pensions: using sheet '%s'", sheet)
    figures = parse_regime_sheet(grids[sheet])
    return PensionSnapshot(as_of=as_of, label=label, url=workbook_url, **figures)


# =============================================================================
# Dataset
# =============================================================================


def build_pension_dataset(snapshot: PensionSnapshot | None, reason: str | None = None) -> DatasetResult:
    """Combine a live snapshot (or the reference values) with derived figures.

    Parameters
    ----------
    snapshot : PensionSnapshot or None
        Live workbook figures; ``None`` builds the reference dataset.
    reason : str, optional
        Failure reason recorded on the fallback fields.
    """
    index_page = get_source_urls("seguridad_social")["index_page"]
    ref = REFERENCE_PENSIONS
    tracker = ProvenanceTracker("pensions")

    if snapshot is not None:
        payroll_ss = snapshot.monthly_payroll_ss
        total_pensions = snapshot.total_pensions
        average_retirement = snapshot.average_pension_retirement
        last_point = {"date": snapshot.as_of.isoformat(), "total_pensions": total_pensions}
        for name in ("monthly_payroll_ss", "total_pensions", "average_pension_retirement"):
            tracker.live(
                name,
                OriginKind.SPREADSHEET,
                f"Seg. Social - Excel REG ({snapshot.label})",
                index_page,
                snapshot.as_of,
                f"Datos Excel Seg. Social {snapshot.label}",
            )
    else:
        payroll_ss = ref["monthly_payroll_ss"]
        total_pensions = ref["total_pensions"]
        average_retirement = ref["average_pension_retirement"]
        last_point = {"date": ref["reference_date"], "total_pensions": total_pensions}
        for name in ("monthly_payroll_ss", "total_pensions", "average_pension_retirement"):
            tracker.fallback(name, "Referencia Seg. Social ene 2026", index_page, note=reason)

    clases_pasivas = ref["monthly_payroll_clases_pasivas"]
    monthly_payroll = payroll_ss + clases_pasivas
    annual_expense = monthly_payroll * PAYMENTS_PER_YEAR
    affiliates = ref["affiliates"]
    social_contributions = ref["social_contributions"]

    tracker.fallback(
        "monthly_payroll_clases_pasivas",
        "Estimación Clases Pasivas",
        note="Clases Pasivas: ministerio separado, dato estimado",
    )
    tracker.fallback("affiliates", "Estimación afiliados SS", note="Afiliados estimados feb 2026")
    tracker.fallback("social_contributions", "PGE - Cotizaciones sociales", PGE_URL, note="Cotizaciones estimadas 2025")
    tracker.fallback("reserve_fund", "Estimación Fondo de Reserva", note="Fondo de reserva estimado feb 2026")
    tracker.fallback("cumulative_deficit", "Estimación déficit contributivo acumulado", note="Suma déficits anuales 2011-2025")
    tracker.derived("monthly_payroll", ["monthly_payroll_ss", "monthly_payroll_clases_pasivas"])
    tracker.derived("annual_expense", ["monthly_payroll"], "Nómina mensual x 14 pagas")
    tracker.derived("contributors_per_pensioner", ["affiliates", "total_pensions"])
    tracker.derived("contributory_deficit", ["annual_expense", "social_contributions"])
    tracker.derived("expense_per_second", ["annual_expense"])

    historical = [dict(point) for point in ref["historical"]]
    historical.append({**last_point, "monthly_payroll": monthly_payroll})

    points = [(epoch_ms(date.fromisoformat(p["date"])), p["monthly_payroll"]) for p in historical]
    fit = linear_regression(points)
    tracker.derived("historical", ["monthly_payroll"], "Serie semestral de referencia + último dato")
    tracker.derived("regression", ["historical"], f"OLS sobre {len(points)} puntos")

    data = {
        "current": {
            "monthly_payroll": monthly_payroll,
            "monthly_payroll_ss": payroll_ss,
            "monthly_payroll_clases_pasivas": clases_pasivas,
            "annual_expense": annual_expense,
            "total_pensions": total_pensions,
            "average_pension_retirement": average_retirement,
            "affiliates": affiliates,
            "pensioners": total_pensions,
            "contributors_per_pensioner": affiliates / total_pensions,
            "expense_per_second": annual_expense / SECONDS_PER_YEAR,
            "social_contributions": social_contributions,
            "contributory_deficit": annual_expense - social_contributions,
            "reserve_fund": ref["reserve_fund"],
            "cumulative_deficit": ref["cumulative_deficit"],
        },
        "historical": historical,
        "regression": {
            "slope": fit.slope,
            "intercept": fit.intercept,
            "last_data_timestamp": points[-1][0],
            # Slope is EUR of monthly payroll per ms; scale to annual expense per second
            "expense_per_second": fit.slope * PAYMENTS_PER_YEAR * 1000 / SECONDS_PER_YEAR,
        },
    }
    logger.info(
        "Pensions: payroll %.2fB EUR/month, annual %.2fB EUR, %s pensions",
        monthly_payroll / 1e9,
        annual_expense / 1e9,
        f"{total_pensions:,.0f}",
    )
    return tracker.build(data, periods=[p["date"] for p in historical])


async def _fetch_pensions_live() -> DatasetResult:
    return build_pension_dataset(await fetch_snapshot())


def build_pensions_fallback(reason: str = "") -> DatasetResult:
    """Build the pensions dataset from :data:`REFERENCE_PENSIONS`."""
    return build_pension_dataset(None, reason or None)


async def fetch_pensions_data() -> DatasetResult:
    """Ingest the pensions dataset; never raises."""
    logger.info("=== Downloading pension data (Seguridad Social) ===")
    return await run_with_fallback("pensions", _fetch_pensions_live, build_pensions_fallback)
