"""Tests for the Banco de España debt sources (fetch mocked)."""

from __future__ import annotations

import asyncio
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from cuentas_publicas.config import get_source_urls
from cuentas_publicas.errors import StructuralError, TransportError
from cuentas_publicas.sources.bde import (
    REFERENCE_CCAA_DEBT,
    REFERENCE_DEBT,
    decode_api_latest,
    decode_debt_table,
    fetch_ccaa_debt_data,
    fetch_debt_data,
)
from cuentas_publicas.transformer.provenance import OriginKind

MONTHS = ["ENE", "FEB", "MAR", "ABR", "MAY", "JUN", "JUL", "AGO", "SEP", "OCT", "NOV", "DIC"]
DEBT_DESCRIPTIONS = [
    "Deuda PDE. AAPP. Total",
    "Deuda PDE. Estado. Total",
    "Deuda PDE. CCAA",
    "Deuda PDE. CCLL",
    "Deuda Seguridad Social",
    "PIB pm. Suma móvil 4 trimestres",
]
BASE_TOTAL = 1_600_000_000  # thousands of euros


def _monthly_rows(count: int) -> list[tuple[str, list[str]]]:
    """Fourteen months from ENE 2024, total growing by 1.000 M EUR a month."""
    rows = []
    for i in range(count):
        label = f"{MONTHS[i % 12]} {2024 + i // 12}"
        total = BASE_TOTAL + i * 1_000_000
        rows.append(
            (label, [str(total), "1250000000", "320000000", "25000000", "40000000", "1500000000"]),
        )
    return rows


def _router(responses: dict[str, object]):
    """Build a side effect returning (or raising) a canned response per URL."""

    def side_effect(url: str, *args: object, **kwargs: object) -> object:
        response = responses.get(url)
        if response is None or isinstance(response, Exception):
            raise response or TransportError(url, 3, "HTTP 404")
        return response

    return side_effect


# =============================================================================
# Decoding
# =============================================================================


class TestDecodeDebtTable:
    """Tests for decode_debt_table."""

    def test_thousands_to_euros(self, transposed_csv) -> None:
        """Totals convert from thousands to euros and debt/GDP is computed."""
        series = decode_debt_table(transposed_csv(DEBT_DESCRIPTIONS, _monthly_rows(2)))

        assert series.total_debt[-1][1] == pytest.approx(1_601_000_000_000)
        assert series.subsectors["estado"] == pytest.approx(1_250_000_000_000)
        assert series.subsectors["ss"] == pytest.approx(40_000_000_000)
        assert series.debt_to_gdp[-1][1] == pytest.approx(1_601_000_000 / 1_500_000_000 * 100)

    def test_zero_totals_skipped(self, transposed_csv) -> None:
        """Rows with a zero-sentinel total are not observations."""
        rows = [("ENE 2024", ["_", "1", "1", "1", "1", "1"]), ("FEB 2024", ["100", "1", "1", "1", "1", "0"])]

        series = decode_debt_table(transposed_csv(DEBT_DESCRIPTIONS, rows))

        assert len(series.total_debt) == 1
        assert series.debt_to_gdp == []

    def test_missing_total_column(self, transposed_csv) -> None:
        """A table without the AAPP total column is structural failure."""
        text = transposed_csv(["Deuda PDE. CCAA", "PIB pm"], [("ENE 2024", ["1", "2"])])

        with pytest.raises(StructuralError, match="total-debt"):
            decode_debt_table(text)


class TestDecodeApiLatest:
    """Tests for decode_api_latest."""

    def test_latest_point_in_euros(self) -> None:
        """The last point of the first non-empty series is converted from millions."""
        payload = [{"Datos": []}, {"Datos": [{"Fecha": "2025-01", "Valor": 1}, {"Fecha": "2025-02", "Valor": "1650000"}]}]

        value, observed = decode_api_latest(payload)

        assert value == pytest.approx(1_650_000_000_000)
        assert observed == date(2025, 2, 28)

    def test_no_value_returns_none(self) -> None:
        """Empty or valueless responses are not errors."""
        assert decode_api_latest([]) is None
        assert decode_api_latest({"error": "x"}) is None
        assert decode_api_latest([{"Datos": [{"Fecha": "2025-02", "Valor": None}]}]) is None

    @pytest.mark.parametrize(
        "point",
        [{"Fecha": "2025-02", "Valor": "n/d"}, "2025-02;1650000", {"Fecha": "2025-02", "Valor": [1]}],
    )
    def test_malformed_point_is_structural(self, point) -> None:
        """Non-numeric values and non-object rows raise StructuralError."""
        with pytest.raises(StructuralError, match="Malformed BdE API"):
            decode_api_latest([{"Datos": [point]}])

    def test_keyed_points_are_structural(self) -> None:
        """A Datos object instead of a list cannot be indexed from the end."""
        with pytest.raises(StructuralError, match="Malformed BdE API"):
            decode_api_latest([{"Datos": {"2025-02": 1650000}}])


# =============================================================================
# Debt Dataset
# =============================================================================


class TestFetchDebtData:
    """Tests for fetch_debt_data."""

    def test_live_with_api_override(self, transposed_csv) -> None:
        """CSV history plus the API's latest total; interest expense stays fallback."""
        urls = get_source_urls("bde")
        text = transposed_csv(DEBT_DESCRIPTIONS, _monthly_rows(14))
        api_payload = [{"Datos": [{"Fecha": "2025-02", "Valor": 1_650_000}]}]

        with (
            patch("cuentas_publicas.sources.bde.fetch_text", new=AsyncMock(side_effect=_router({urls["debt_monthly_csv"]: text}))),
            patch("cuentas_publicas.sources.bde.fetch_json", new=AsyncMock(return_value=api_payload)),
        ):
            result = asyncio.run(fetch_debt_data())

        current = result.data["current"]
        assert not result.is_fallback
        assert current["total_debt"] == pytest.approx(1_650_000_000_000)
        assert result.provenance["total_debt"].origin_kind is OriginKind.API
        assert result.provenance["historical"].origin_kind is OriginKind.DELIMITED_TEXT
        assert len(result.data["historical"]) == 14
        expected_yoy = (1_613_000_000 - 1_601_000_000) / 1_601_000_000 * 100
        assert current["year_over_year_change"] == pytest.approx(expected_yoy)
        assert current["debt_to_gdp"] == pytest.approx(1_613_000_000 / 1_500_000_000 * 100)
        assert result.fallback_fields == ["interest_expense"]
        assert result.data["regression"]["debt_per_second"] > 0
        assert result.periods_covered[-1] == "2025-02-01"
        assert result.provenance["total_debt"].observed_at == date(2025, 2, 28)

    def test_malformed_api_value_keeps_csv_dataset(self, transposed_csv) -> None:
        """A non-numeric API value is ignored and the live CSV total is kept."""
        urls = get_source_urls("bde")
        text = transposed_csv(DEBT_DESCRIPTIONS, _monthly_rows(14))
        api_payload = [{"Datos": [{"Fecha": "2025-02", "Valor": "n/d"}]}]

        with (
            patch("cuentas_publicas.sources.bde.fetch_text", new=AsyncMock(side_effect=_router({urls["debt_monthly_csv"]: text}))),
            patch("cuentas_publicas.sources.bde.fetch_json", new=AsyncMock(return_value=api_payload)),
        ):
            result = asyncio.run(fetch_debt_data())

        assert not result.is_fallback
        assert result.data["current"]["total_debt"] == pytest.approx(1_613_000_000_000)
        assert result.provenance["total_debt"].origin_kind is OriginKind.DELIMITED_TEXT
        assert result.provenance["total_debt"].observed_at == date(2025, 2, 1)

    def test_quarterly_candidate_when_monthly_fails(self, transposed_csv) -> None:
        """The quarterly CSV is used when the monthly one cannot be read."""
        urls = get_source_urls("bde")
        text = transposed_csv(DEBT_DESCRIPTIONS, [("MAR 2025", ["1620000000", "1", "1", "1", "1", "1500000000"])])
        responses = {urls["debt_monthly_csv"]: "garbage", urls["debt_quarterly_csv"]: text}

        with (
            patch("cuentas_publicas.sources.bde.fetch_text", new=AsyncMock(side_effect=_router(responses))),
            patch("cuentas_publicas.sources.bde.fetch_json", new=AsyncMock(side_effect=TransportError("api", 3, "HTTP 500"))),
        ):
            result = asyncio.run(fetch_debt_data())

        assert not result.is_fallback
        assert result.data["current"]["total_debt"] == pytest.approx(1_620_000_000_000)
        assert "be1101" in result.provenance["total_debt"].label
        assert result.data["current"]["year_over_year_change"] == 0.0

    def test_fallback_when_every_candidate_fails(self) -> None:
        """Transport failure on both CSVs yields the reference dataset."""
        with patch("cuentas_publicas.sources.bde.fetch_text", new=AsyncMock(side_effect=_router({}))):
            result = asyncio.run(fetch_debt_data())

        assert result.is_fallback
        assert result.data["current"]["total_debt"] == REFERENCE_DEBT["current"]["total_debt"]
        assert "total_debt" in result.fallback_fields
        assert result.data["regression"]["debt_per_second"] == pytest.approx(REFERENCE_DEBT["regression_slope"] * 1000)


# =============================================================================
# CCAA Debt Dataset
# =============================================================================


class TestFetchCcaaDebtData:
    """Tests for fetch_ccaa_debt_data."""

    @staticmethod
    def _csv(transposed_csv, rows: list[tuple[str, list[str]]]) -> str:
        return transposed_csv(
            ["Total CCAA", "Andalucía", "Madrid", "C. Valenciana"],
            rows,
            aliases=["BE_13_9.1", "BE_13_9.2", "BE_13_9.14", "BE_13_9.18"],
        )

    def test_live_suffixes_map_to_region_codes(self, transposed_csv) -> None:
        """Alias suffixes resolve to INE codes; the latest non-zero value wins."""
        urls = get_source_urls("bde")
        absolute = self._csv(
            transposed_csv,
            [("MAR 2025", ["338000000", "40000000", "37000000", "62000000"]), ("JUN 2025", ["338804000", "40452000", "_", "62424000"])],
        )
        ratio = self._csv(transposed_csv, [("JUN 2025", ["20.4", "18.3", "11.5", "40.5"])])
        responses = {urls["ccaa_debt_csv"]: absolute, urls["ccaa_debt_gdp_csv"]: ratio}

        with patch("cuentas_publicas.sources.bde.fetch_text", new=AsyncMock(side_effect=_router(responses))):
            result = asyncio.run(fetch_ccaa_debt_data())

        entries = {entry["code"]: entry for entry in result.data["ccaa"]}
        assert not result.is_fallback
        assert result.data["quarter"] == "2025-Q2"
        assert len(entries) == 17
        assert entries["CA01"]["debt_absolute"] == pytest.approx(40_452_000_000)
        assert entries["CA13"]["debt_absolute"] == pytest.approx(37_000_000_000)
        assert entries["CA10"]["debt_to_gdp"] == 40.5
        assert entries["CA09"]["debt_absolute"] == 0.0
        assert result.data["total"]["debt_absolute"] == pytest.approx(338_804_000_000)
        assert [e["code"] for e in result.data["ccaa"]] == sorted(entries)

    def test_fallback(self) -> None:
        """Unreachable CSVs yield the reference quarter."""
        with patch("cuentas_publicas.sources.bde.fetch_text", new=AsyncMock(side_effect=_router({}))):
            result = asyncio.run(fetch_ccaa_debt_data())

        assert result.is_fallback
        assert result.data["quarter"] == REFERENCE_CCAA_DEBT["quarter"]
        assert len(result.data["ccaa"]) == 17
