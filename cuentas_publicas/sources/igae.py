"""General-government expenditure by function (COFOG) from the IGAE.

The workbook has one sheet per year (the newest may carry a provisional
suffix such as ``"2024(P)"``). Row 7 holds the ``NN.M`` sub-function codes and
the "GASTO TOTAL" row carries the amounts, in millions of euros.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import get_source_urls, setup_logging
from cuentas_publicas.errors import StructuralError
from cuentas_publicas.extractor.validation import validate_component_sum
from cuentas_publicas.extractor.workbook import (
    HierarchicalColumns,
    cell_text,
    discover_hierarchical_columns,
    find_year_sheets,
    load_workbook_grids,
    locate_row,
    read_row_values,
)
from cuentas_publicas.scraper.http_client import fetch_bytes
from cuentas_publicas.transformer.provenance import (
    DatasetResult,
    OriginKind,
    ProvenanceTracker,
    frozen_copy,
    run_with_fallback,
)
from cuentas_publicas.utils.dates import month_end

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from cuentas_publicas.extractor.workbook import Grid

logger = setup_logging(__name__)

__all__ = [
    "COFOG_NAMES",
    "COFOG_SUBCATEGORY_NAMES",
    "REFERENCE_BUDGET",
    "build_budget_fallback",
    "fetch_budget_data",
    "parse_cofog_workbook",
    "parse_year_sheet",
]

HEADER_ROW = 7
TOTAL_ROW = 8
TOTAL_LABEL = "GASTO TOTAL"
EXPECTED_DIVISIONS = 10

COFOG_NAMES: dict[str, str] = {
    "01": "Servicios públicos generales",
    "02": "Defensa",
    "03": "Orden público y seguridad",
    "04": "Asuntos económicos",
    "05": "Protección del medio ambiente",
    "06": "Vivienda y servicios comunitarios",
    "07": "Salud",
    "08": "Ocio, cultura y religión",
    "09": "Educación",
    "10": "Protección social",
}

COFOG_SUBCATEGORY_NAMES: dict[str, str] = {
    "01.1": "Órganos ejecutivos y legislativos",
    "01.2": "Ayuda económica exterior",
    "01.3": "Servicios generales",
    "01.4": "Investigación básica",
    "01.5": "I+D servicios públicos generales",
    "01.6": "Servicios públicos generales n.c.o.p.",
    "01.7": "Operaciones de deuda pública",
    "01.8": "Transferencias entre AAPP",
    "02.1": "Defensa militar",
    "02.2": "Defensa civil",
    "02.3": "Ayuda militar al exterior",
    "02.4": "I+D defensa",
    "02.5": "Defensa n.c.o.p.",
    "03.1": "Servicios de policía",
    "03.2": "Protección contra incendios",
    "03.3": "Tribunales de justicia",
    "03.4": "Prisiones",
    "03.5": "I+D orden público",
    "03.6": "Orden público y seguridad n.c.o.p.",
    "04.1": "Asuntos económicos y laborales",
    "04.2": "Agricultura, silvicultura, pesca y caza",
    "04.3": "Combustible y energía",
    "04.4": "Minería, manufacturas y construcción",
    "04.5": "Transporte",
    "04.6": "Comunicaciones",
    "04.7": "Otras actividades",
    "04.8": "I+D asuntos económicos",
    "04.9": "Asuntos económicos n.c.o.p.",
    "05.1": "Gestión de residuos",
    "05.2": "Gestión de aguas residuales",
    "05.3": "Reducción de la contaminación",
    "05.4": "Protección de la biodiversidad",
    "05.5": "I+D medio ambiente",
    "05.6": "Medio ambiente n.c.o.p.",
    "06.1": "Urbanismo",
    "06.2": "Desarrollo comunitario",
    "06.3": "Abastecimiento de agua",
    "06.4": "Alumbrado público",
    "06.5": "I+D vivienda",
    "06.6": "Vivienda y servicios comunitarios n.c.o.p.",
    "07.1": "Productos farmacéuticos",
    "07.2": "Servicios ambulatorios",
    "07.3": "Servicios hospitalarios",
    "07.4": "Salud pública",
    "07.5": "I+D salud",
    "07.6": "Salud n.c.o.p.",
    "08.1": "Servicios recreativos y deportivos",
    "08.2": "Servicios culturales",
    "08.3": "Radio, televisión y edición",
    "08.4": "Servicios religiosos y comunitarios",
    "08.5": "I+D ocio, cultura y religión",
    "08.6": "Ocio, cultura y religión n.c.o.p.",
    "09.1": "Educación preescolar y primaria",
    "09.2": "Educación secundaria",
    "09.3": "Educación postsecundaria no terciaria",
    "09.4": "Educación terciaria",
    "09.5": "Educación no atribuible a nivel",
    "09.6": "Servicios auxiliares de educación",
    "09.7": "I+D educación",
    "09.8": "Educación n.c.o.p.",
    "10.1": "Enfermedad e incapacidad",
    "10.2": "Edad avanzada",
    "10.3": "Supérstites",
    "10.4": "Familia e hijos",
    "10.5": "Desempleo",
    "10.6": "Vivienda",
    "10.7": "Exclusión social n.c.o.p.",
    "10.8": "I+D protección social",
    "10.9": "Protección social n.c.o.p.",
}

# Layout of the 2024 edition, used when the header codes cannot be read
STANDARD_LAYOUT = HierarchicalColumns.from_ranges(
    ranges={
        "01": (2, 9),
        "02": (11, 15),
        "03": (17, 22),
        "04": (24, 32),
        "05": (34, 39),
        "06": (41, 46),
        "07": (48, 53),
        "08": (55, 60),
        "09": (62, 69),
        "10": (71, 79),
    },
    group_totals={
        "01": 10, "02": 16, "03": 23, "04": 33, "05": 40,
        "06": 47, "07": 54, "08": 61, "09": 70, "10": 80,
    },
    grand_total=81,
)


# =============================================================================
# Reference Values
# =============================================================================

REFERENCE_BUDGET: Mapping[str, Any] = frozen_copy(
    {
        "years": [2020, 2021, 2022, 2023],
        "latest_year": 2023,
        "by_year": {
            "2023": {
                "total": 690624,
                "categories": [
                    {"code": "01", "name": COFOG_NAMES["01"], "amount": 89835, "percentage": 13.0},
                    {"code": "02", "name": COFOG_NAMES["02"], "amount": 13572, "percentage": 2.0},
                    {"code": "03", "name": COFOG_NAMES["03"], "amount": 27329, "percentage": 4.0},
                    {"code": "04", "name": COFOG_NAMES["04"], "amount": 75870, "percentage": 11.0},
                    {"code": "05", "name": COFOG_NAMES["05"], "amount": 14847, "percentage": 2.1},
                    {"code": "06", "name": COFOG_NAMES["06"], "amount": 7301, "percentage": 1.1},
                    {"code": "07", "name": COFOG_NAMES["07"], "amount": 97826, "percentage": 14.2},
                    {"code": "08", "name": COFOG_NAMES["08"], "amount": 18488, "percentage": 2.7},
                    {"code": "09", "name": COFOG_NAMES["09"], "amount": 62579, "percentage": 9.1},
                    {"code": "10", "name": COFOG_NAMES["10"], "amount": 282977, "percentage": 41.0},
                ],
            }
        },
    }
)


# =============================================================================
# Parsing
# =============================================================================


def _is_total_row(row: Sequence[object]) -> bool:
    return cell_text(row, 1) == TOTAL_LABEL


def parse_year_sheet(grid: Grid, sheet_name: str) -> dict[str, Any] | None:
    """Extract division and sub-function amounts from one year sheet.

    Parameters
    ----------
    grid : Grid
        Sheet rows.
    sheet_name : str
        Used in diagnostics only.

    Returns
    -------
    dict or None
        ``{"total": float, "categories": [...]}`` or ``None`` when the sheet
        has no usable "GASTO TOTAL" row or its grand total is not positive.
    """
    if len(grid) <= TOTAL_ROW:
        logger.warning("[%s] Sheet too short (%d rows)", sheet_name, len(grid))
        return None

    header = grid[HEADER_ROW]
    layout = discover_hierarchical_columns(header, EXPECTED_DIVISIONS, STANDARD_LAYOUT)

    total_index = locate_row(grid, _is_total_row, fixed_index=TOTAL_ROW)
    if total_index is None:
        logger.warning("[%s] No '%s' row", sheet_name, TOTAL_LABEL)
        return None
    row = grid[total_index]

    columns = layout.column_map(header)
    values = read_row_values(row, columns, "total")
    if values is None:
        logger.warning("[%s] Grand total missing or not positive", sheet_name)
        return None
    grand_total = values["total"]

    categories: list[dict[str, Any]] = []
    division_amounts: dict[str, float] = {}
    for code in sorted(layout.group_totals):
        amount = values[code]
        division_amounts[code] = amount

        children = []
        for col in layout.subitems.get(code, ()):
            sub_code = cell_text(header, col)
            sub_amount = values.get(sub_code, 0.0)
            if sub_amount == 0:
                continue
            children.append(
                {
                    "code": sub_code,
                    "name": COFOG_SUBCATEGORY_NAMES.get(sub_code, sub_code),
                    "amount": sub_amount,
                    "percentage": sub_amount / grand_total * 100,
                }
            )

        category: dict[str, Any] = {
            "code": code,
            "name": COFOG_NAMES.get(code, f"División {code}"),
            "amount": amount,
            "percentage": amount / grand_total * 100,
        }
        if children:
            category["children"] = children
        categories.append(category)

    validate_component_sum(f"IGAE {sheet_name}: divisions vs GASTO TOTAL", grand_total, division_amounts)
    return {"total": grand_total, "categories": categories}


def parse_cofog_workbook(grids: Mapping[str, Grid]) -> dict[str, Any]:
    """Parse every year sheet; a year that fails is skipped without affecting the rest.

    Raises
    ------
    StructuralError
        If no year sheet produced data.
    """
    year_sheets = find_year_sheets(list(grids))
    if not year_sheets:
        msg = f"No year sheets in COFOG workbook (sheets: {', '.join(grids)})"
        raise StructuralError(msg)
    logger.info("COFOG year sheets: %d-%d (%d)", min(year_sheets), max(year_sheets), len(year_sheets))

    by_year: dict[str, Any] = {}
    for year, sheet in year_sheets.items():
        parsed = parse_year_sheet(grids[sheet], sheet)
        if parsed is not None:
            by_year[str(year)] = parsed

    if not by_year:
        msg = "No COFOG year sheet could be parsed"
        raise StructuralError(msg)

    years = sorted(int(year) for year in by_year)
    return {"years": years, "latest_year": years[-1], "by_year": by_year}


# =============================================================================
# Dataset
# =============================================================================


async def _fetch_budget_live() -> DatasetResult:
    url = get_source_urls("igae")["cofog_xlsx"]
    data = parse_cofog_workbook(load_workbook_grids(await fetch_bytes(url)))
    years = data["years"]
    latest = data["by_year"][str(data["latest_year"])]

    logger.info("COFOG %d: total expenditure %s M EUR", data["latest_year"], f"{latest['total']:,.0f}")
    for category in latest["categories"]:
        logger.debug("  %s %s: %.0f (%.1f%%)", category["code"], category["name"], category["amount"], category["percentage"])

    tracker = ProvenanceTracker("budget")
    tracker.live(
        "by_year",
        OriginKind.SPREADSHEET,
        f"IGAE - COFOG Total AAPP ({years[0]}-{years[-1]})",
        url,
        month_end(years[-1], 12),
        f"Datos anuales {years[0]}-{years[-1]}, millones de euros",
    )
    return tracker.build(data, periods=years)


def build_budget_fallback(reason: str = "") -> DatasetResult:
    """Build the budget dataset from :data:`REFERENCE_BUDGET`."""
    tracker = ProvenanceTracker("budget")
    tracker.fallback(
        "by_year",
        "Referencia IGAE COFOG AAPP 2023",
        get_source_urls("igae")["cofog_xlsx"],
        month_end(REFERENCE_BUDGET["latest_year"], 12),
        reason or "Datos de referencia, descarga IGAE no disponible",
    )
    return tracker.build(REFERENCE_BUDGET, periods=REFERENCE_BUDGET["years"])


async def fetch_budget_data() -> DatasetResult:
    """Ingest the budget dataset; never raises."""
    logger.info("=== Downloading budget data (IGAE COFOG) ===")
    return await run_with_fallback("budget", _fetch_budget_live, build_budget_fallback)
