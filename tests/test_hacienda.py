"""Tests for the Hacienda regional fiscal-balance source."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest

from cuentas_publicas.errors import StructuralError, TransportError
from cuentas_publicas.sources.hacienda import (
    REFERENCE_FISCAL_BALANCE_2023,
    build_fiscal_balance_entry,
    compute_year_totals,
    detect_year_links,
    fetch_ccaa_fiscal_balance_data,
    parse_settlement_sheet,
)

INDEX_URL = "https://www.hacienda.gob.es/es-ES/CDI/Paginas/Informes.aspx"
INDEX_HTML = """
<a href="/CDI/Sist%20Financiacion/cuadros-liquidacion-2022.xlsx">2022</a>
<a href="/CDI/Sist%20Financiacion/cuadros-liquidacion-2023.xlsx">2023</a>
<a href="/CDI/otros/informe.pdf">Informe</a>
"""
HEADER = [
    "Comunidad / Ciudad Autónoma",
    "Tarifa autonómica de IRPF",
    "Impuesto sobre el Valor Añadido",
    "Total Impuestos Especiales",
    "Transferencia del Fondo de Garantía",
    "Fondo de Suficiencia Global",
    "Fondo de Competitividad",
    "Fondo de Cooperación",
]


def settlement_grid() -> list[list[object]]:
    """Settlement sheet in thousands of euros, with rows that must be skipped."""
    return [
        ["Liquidación definitiva del sistema de financiación"],
        [],
        HEADER,
        ["Andalucía", 802_191, -80_894, -249_164, 77_286, 35_048, 0, 645_763],
        ["Comunidad de Madrid", 621_484, 563_740, -187_409, -389_868, -52_587, 249_688, 0],
        ["Navarra", 1, 1, 1, 1, 1, 1, 1],
        ["Ceuta", 5, 5, 5, 5, 5, 5, 5],
        ["Total CC.AA.", 9, 9, 9, 9, 9, 9, 9],
    ]


# =============================================================================
# Entries
# =============================================================================


class TestBuildFiscalBalanceEntry:
    """Tests for build_fiscal_balance_entry."""

    def test_balance_is_transfers_minus_taxes(self) -> None:
        """Net balance and ratio are rounded to three decimals."""
        entry = build_fiscal_balance_entry(
            "CA01",
            {"irpf": 802.191, "iva": -80.894, "iiee": -249.164},
            {"fondo_garantia": 77.286, "fondo_suficiencia": 35.048, "fondo_competitividad": 0, "fondo_cooperacion": 645.763},
        )

        assert entry["ceded_taxes"] == 472.133
        assert entry["transfers"] == 758.097
        assert entry["net_balance"] == 285.964
        assert entry["transfer_to_tax_ratio"] == 1.606
        assert entry["name"] == "Andalucía"

    def test_zero_taxes_ratio_is_none(self) -> None:
        """No ratio is reported when ceded taxes are zero."""
        zero_taxes = {"irpf": 0.0, "iva": 0.0, "iiee": 0.0}
        funds = dict.fromkeys(("fondo_garantia", "fondo_suficiencia", "fondo_competitividad", "fondo_cooperacion"), 1.0)

        entry = build_fiscal_balance_entry("CA17", zero_taxes, funds)

        assert entry["transfer_to_tax_ratio"] is None
        assert entry["net_balance"] == 4.0

    def test_year_totals(self) -> None:
        """Totals add every community."""
        entries = [
            {"ceded_taxes": 1.5, "transfers": 2.0, "net_balance": 0.5},
            {"ceded_taxes": 2.5, "transfers": 1.0, "net_balance": -1.5},
        ]

        assert compute_year_totals(entries) == {"ceded_taxes": 4.0, "transfers": 3.0, "net_balance": -1.0}


# =============================================================================
# Parsing
# =============================================================================


class TestDetectYearLinks:
    """Tests for detect_year_links."""

    def test_years_ascending_and_absolute(self) -> None:
        """Links resolve against the page URL, ascending by year."""
        links = detect_year_links(INDEX_HTML, INDEX_URL)

        assert list(links) == [2022, 2023]
        assert links[2023] == "https://www.hacienda.gob.es/CDI/Sist%20Financiacion/cuadros-liquidacion-2023.xlsx"


class TestParseSettlementSheet:
    """Tests for parse_settlement_sheet."""

    def test_common_regime_rows_only(self) -> None:
        """Foral communities, autonomous cities and totals are skipped."""
        parsed = parse_settlement_sheet(settlement_grid(), 2023)

        assert [e["code"] for e in parsed["entries"]] == ["CA01", "CA13"]
        madrid = parsed["entries"][1]
        assert madrid["ceded_taxes_breakdown"]["iva"] == 563.74
        assert madrid["transfers_breakdown"]["fondo_competitividad"] == 249.688
        assert parsed["totals"]["ceded_taxes"] == pytest.approx(472.133 + 997.815)

    def test_partial_header_missing_required_column(self) -> None:
        """A low-confidence header is still rejected when a required column does not resolve."""
        grid = settlement_grid()
        grid[2] = [*HEADER[:4], "Otro", *HEADER[5:]]

        with pytest.raises(StructuralError, match="Columns not found: fondo_garantia"):
            parse_settlement_sheet(grid, 2023)

    def test_partially_labelled_header(self, caplog: pytest.LogCaptureFixture) -> None:
        """A header without its community label is accepted with a warning when every amount column resolves."""
        grid = settlement_grid()
        grid[2] = [None, *HEADER[1:]]

        with caplog.at_level(logging.WARNING):
            parsed = parse_settlement_sheet(grid, 2023)

        assert [e["code"] for e in parsed["entries"]] == ["CA01", "CA13"]
        assert parsed["entries"][0]["transfers_breakdown"]["fondo_cooperacion"] == 645.763
        assert any("partially labelled" in r.getMessage() for r in caplog.records)

    def test_no_header(self) -> None:
        """A sheet with none of the expected labels is a structural failure."""
        grid = [["Liquidación"], ["Andalucía", 1, 2, 3]]

        with pytest.raises(StructuralError, match="header not found"):
            parse_settlement_sheet(grid, 2023)

    def test_missing_fund_column(self) -> None:
        """Every tax and fund column is required."""
        grid = settlement_grid()
        grid[2] = [*HEADER[:6], "Otro", "Fondo de Cooperación"]

        with pytest.raises(StructuralError, match="fondo_competitividad"):
            parse_settlement_sheet(grid, 2023)

    def test_no_community_rows(self) -> None:
        """A sheet with only skipped rows is structural failure."""
        grid = settlement_grid()[:3] + [["Total CC.AA.", 1, 1, 1, 1, 1, 1, 1]]

        with pytest.raises(StructuralError, match="no community rows"):
            parse_settlement_sheet(grid, 2023)


# =============================================================================
# Dataset
# =============================================================================


class TestFetchCcaaFiscalBalanceData:
    """Tests for fetch_ccaa_fiscal_balance_data."""

    def test_failing_year_is_skipped(self, workbook_bytes) -> None:
        """One unreachable year does not discard the others."""
        content = workbook_bytes({"1. Resumen": [["x"]], "3. Liquidación definitiva": settlement_grid()})

        async def fake_fetch(url: str, **kwargs: object) -> bytes:
            if url.endswith("2023.xlsx"):
                return content
            raise TransportError(url, 3, "HTTP 404")

        with (
            patch("cuentas_publicas.sources.hacienda.fetch_text", new=AsyncMock(return_value=INDEX_HTML)),
            patch("cuentas_publicas.sources.hacienda.fetch_bytes", new=AsyncMock(side_effect=fake_fetch)),
        ):
            result = asyncio.run(fetch_ccaa_fiscal_balance_data())

        assert not result.is_fallback
        assert list(result.data["years"]) == [2023]
        assert len(result.data["by_year"]["2023"]["entries"]) == 2
        assert result.data["coverage"]["excludes_foral"] is True

    def test_no_links_falls_back(self) -> None:
        """An index page without settlement links yields the reference year."""
        with patch("cuentas_publicas.sources.hacienda.fetch_text", new=AsyncMock(return_value="<html></html>")):
            result = asyncio.run(fetch_ccaa_fiscal_balance_data())

        assert result.is_fallback
        assert result.data["latest_year"] == 2023
        entries = result.data["by_year"]["2023"]["entries"]
        assert len(entries) == len(REFERENCE_FISCAL_BALANCE_2023["by_year"]["2023"]["entries"]) == 15
        assert all(e["code"] not in ("CA15", "CA16") for e in entries)
