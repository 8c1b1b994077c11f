"""Tests for the Seguridad Social pensions source."""

from __future__ import annotations

import asyncio
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from cuentas_publicas.errors import RangeError, StructuralError, TransportError
from cuentas_publicas.sources.seguridad_social import (
    PAYMENTS_PER_YEAR,
    REFERENCE_PENSIONS,
    SECONDS_PER_YEAR,
    PensionSnapshot,
    build_pension_dataset,
    fetch_pensions_data,
    find_workbook_link,
    parse_regime_sheet,
)

BASE_URL = "https://www.seg-social.es"
INDEX_HTML = """
<html><body>
<a href="/wps/wcm/connect/wss/abc/Resumen.xlsx">Resumen</a>
<a href="/wps/wcm/connect/wss/def/REG202601.xlsx?MOD=AJPERES&amp;CVID=p1">Pensiones por régimen</a>
</body></html>
"""


def regime_grid(count: float = 10_400_000, payroll: float = 14_200_000_000) -> list[list[object]]:
    """Regime/class sheet with one regime row and the system total."""
    return [
        ["Pensiones contributivas en vigor", None],
        ["Régimen", "Número", "Importe", "P. media", "Número", "Importe", "P. media", "Número", "Importe", "P. media"],
        ["General", 7_000_000, 10_000_000_000, 1_428.5, 700_000, 900_000_000, 1_285.7, 4_500_000, 7_500_000_000, 1_666.6],
        ["TOTAL SISTEMA", count, payroll, 1_365.38, 900_000, 1_100_000_000, 1_222.2, 6_500_000, 10_163_000_000, 1_563.561],
    ]


# =============================================================================
# Scraping and Parsing
# =============================================================================


class TestFindWorkbookLink:
    """Tests for find_workbook_link."""

    def test_absolute_url_and_month(self) -> None:
        """The REG link is made absolute, unescaped and dated."""
        url, as_of = find_workbook_link(INDEX_HTML, BASE_URL)

        assert url == f"{BASE_URL}/wps/wcm/connect/wss/def/REG202601.xlsx?MOD=AJPERES&CVID=p1"
        assert as_of == date(2026, 1, 1)

    def test_no_regime_workbook(self) -> None:
        """A page listing only other workbooks is structural failure."""
        with pytest.raises(StructuralError, match="REG"):
            find_workbook_link('<a href="/x/Resumen.xlsx">r</a>', BASE_URL)


class TestParseRegimeSheet:
    """Tests for parse_regime_sheet."""

    def test_total_row(self) -> None:
        """Only the system total row is read."""
        figures = parse_regime_sheet(regime_grid())

        assert figures == {
            "monthly_payroll_ss": 14_200_000_000,
            "total_pensions": 10_400_000,
            "average_pension": 1_365.38,
            "retirement_pensions": 6_500_000,
            "average_pension_retirement": 1_563.56,
        }

    def test_implausible_count(self) -> None:
        """A pension count outside its bound is a range failure."""
        with pytest.raises(RangeError, match="total_pensions"):
            parse_regime_sheet(regime_grid(count=10_400))

    def test_implausible_payroll(self) -> None:
        """A payroll reported in thousands is a range failure."""
        with pytest.raises(RangeError, match="monthly_payroll"):
            parse_regime_sheet(regime_grid(payroll=14_200_000))

    def test_missing_total_row(self) -> None:
        """A sheet without the total row is structural failure."""
        with pytest.raises(StructuralError, match="Total sistema"):
            parse_regime_sheet(regime_grid()[:3])


# =============================================================================
# Dataset
# =============================================================================


class TestBuildPensionDataset:
    """Tests for build_pension_dataset."""

    def test_derived_figures(self) -> None:
        """Payroll adds Clases Pasivas; annual expense counts fourteen payments."""
        snapshot = PensionSnapshot(
            as_of=date(2026, 1, 1),
            label="enero 2026",
            url=f"{BASE_URL}/REG202601.xlsx",
            monthly_payroll_ss=14_200_000_000,
            total_pensions=10_400_000,
            average_pension=1_365.38,
            retirement_pensions=6_500_000,
            average_pension_retirement=1_563.56,
        )

        result = build_pension_dataset(snapshot)

        current = result.data["current"]
        monthly = 14_200_000_000 + REFERENCE_PENSIONS["monthly_payroll_clases_pasivas"]
        assert current["monthly_payroll"] == monthly
        assert current["annual_expense"] == monthly * PAYMENTS_PER_YEAR
        assert current["expense_per_second"] == pytest.approx(monthly * PAYMENTS_PER_YEAR / SECONDS_PER_YEAR)
        assert current["contributors_per_pensioner"] == pytest.approx(REFERENCE_PENSIONS["affiliates"] / 10_400_000)
        assert current["contributory_deficit"] == monthly * PAYMENTS_PER_YEAR - REFERENCE_PENSIONS["social_contributions"]
        assert result.data["historical"][-1]["date"] == "2026-01-01"
        assert result.data["regression"]["slope"] > 0
        assert not result.is_fallback
        assert "affiliates" in result.fallback_fields
        assert result.provenance["total_pensions"].label == "Seg. Social - Excel REG (enero 2026)"

    def test_reference_dataset(self) -> None:
        """Without a snapshot every non-derived field is a reference value."""
        result = build_pension_dataset(None, "HTTP 503")

        assert result.is_fallback
        assert result.data["current"]["total_pensions"] == REFERENCE_PENSIONS["total_pensions"]
        assert result.provenance["total_pensions"].note == "HTTP 503"
        assert result.data["historical"][-1]["date"] == REFERENCE_PENSIONS["reference_date"]


class TestFetchPensionsData:
    """Tests for fetch_pensions_data."""

    def test_live(self, workbook_bytes) -> None:
        """The scraped workbook link is downloaded and the regime sheet parsed."""
        content = workbook_bytes({"Índice": [["Contenido"]], "Régimen_clase": regime_grid()})
        fetch_bytes = AsyncMock(return_value=content)

        with (
            patch("cuentas_publicas.sources.seguridad_social.fetch_text", new=AsyncMock(return_value=INDEX_HTML)),
            patch("cuentas_publicas.sources.seguridad_social.fetch_bytes", new=fetch_bytes),
        ):
            result = asyncio.run(fetch_pensions_data())

        assert not result.is_fallback
        assert result.data["current"]["monthly_payroll_ss"] == 14_200_000_000
        assert result.provenance["monthly_payroll_ss"].observed_at == date(2026, 1, 1)
        assert fetch_bytes.await_args.args[0].endswith("CVID=p1")

    def test_page_unreachable(self) -> None:
        """A failing index page yields the reference dataset."""
        with patch(
            "cuentas_publicas.sources.seguridad_social.fetch_text",
            new=AsyncMock(side_effect=TransportError("x", 3, "timeout")),
        ):
            result = asyncio.run(fetch_pensions_data())

        assert result.is_fallback
        assert result.data["current"]["monthly_payroll_ss"] == REFERENCE_PENSIONS["monthly_payroll_ss"]
