"""Tests for locale parsing, label normalization and period helpers."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from cuentas_publicas.errors import RangeError, check_range
from cuentas_publicas.utils.dates import month_end, pick_latest_date, to_iso_date
from cuentas_publicas.utils.parsing import (
    matches_all,
    normalize_text,
    parse_cell_number,
    parse_international_number,
    parse_period_label,
    parse_spanish_number,
)

# =============================================================================
# Spanish Numbers
# =============================================================================


class TestParseSpanishNumber:
    """Tests for parse_spanish_number."""

    def test_thousands_and_decimal(self) -> None:
        """Dots are thousands separators and the comma is decimal."""
        assert parse_spanish_number("1.234,56") == pytest.approx(1234.56)

    def test_multiple_thousands_groups(self) -> None:
        """Several dot groups collapse into one integer part."""
        assert parse_spanish_number("1.234.567,89") == pytest.approx(1234567.89)

    def test_negative(self) -> None:
        """A leading minus sign is kept."""
        assert parse_spanish_number("-1.234,56") == pytest.approx(-1234.56)

    def test_plain_integer(self) -> None:
        """Digits without separators parse as-is."""
        assert parse_spanish_number("1234") == 1234.0

    def test_quoted_value(self) -> None:
        """Surrounding double quotes are stripped."""
        assert parse_spanish_number('"2.500,5"') == pytest.approx(2500.5)

    @pytest.mark.parametrize("value", ["", None, "N/A", "Fecha", "_", "12a"])
    def test_non_numeric_is_zero(self, value: str | None) -> None:
        """Empty or non-numeric input yields the zero sentinel."""
        assert parse_spanish_number(value) == 0.0


class TestParseCellNumber:
    """Tests for parse_cell_number."""

    def test_numeric_cells_pass_through(self) -> None:
        """Ints and floats are returned as floats."""
        assert parse_cell_number(42) == 42.0
        assert parse_cell_number(3.5) == 3.5

    def test_spanish_string(self) -> None:
        """String cells use the Spanish rule."""
        assert parse_cell_number("1.000,5") == pytest.approx(1000.5)

    @pytest.mark.parametrize("value", [None, "", "  ", "Total", True])
    def test_missing_is_none(self, value: object) -> None:
        """Blank, textual and boolean cells are missing, not zero."""
        assert parse_cell_number(value) is None


class TestParseInternationalNumber:
    """Tests for parse_international_number."""

    def test_dot_decimal(self) -> None:
        """The dot is the decimal separator."""
        assert parse_international_number("123.45") == pytest.approx(123.45)

    @pytest.mark.parametrize("value", [None, "", "_", '"_"', "abc"])
    def test_missing_markers(self, value: str | None) -> None:
        """Underscore, blanks and garbage mean missing."""
        assert parse_international_number(value) is None


# =============================================================================
# Text and Periods
# =============================================================================


class TestNormalizeText:
    """Tests for normalize_text and matches_all."""

    def test_strips_accents_and_case(self) -> None:
        """Accents are removed and text is casefolded."""
        assert normalize_text("  Liquidación   DEFINITIVA ") == "liquidacion definitiva"

    def test_none_is_empty(self) -> None:
        """None normalizes to an empty string."""
        assert normalize_text(None) == ""

    def test_matches_all_tokens(self) -> None:
        """Every token must appear, ignoring case."""
        description = "Deuda según el PDE. Total AAPP"
        assert matches_all(description, ["deuda", "total"])
        assert not matches_all(description, ["deuda", "estado"])


class TestParsePeriodLabel:
    """Tests for parse_period_label."""

    def test_month_year(self) -> None:
        """Spanish month abbreviations map to the first of the month."""
        assert parse_period_label("DIC 1994") == date(1994, 12, 1)
        assert parse_period_label('"ENE 2024"') == date(2024, 1, 1)

    @pytest.mark.parametrize("label", ["", "2024", "XXX 2024", "ENE dos", "ENE 2024 extra"])
    def test_invalid_labels(self, label: str) -> None:
        """Anything but a month/year pair is rejected."""
        assert parse_period_label(label) is None


class TestDates:
    """Tests for the date helpers used by metadata."""

    def test_to_iso_date_year_and_quarter(self) -> None:
        """Years end on 31 December and quarters on their last day."""
        assert to_iso_date(2023) == "2023-12-31"
        assert to_iso_date("2023") == "2023-12-31"
        assert to_iso_date("2025-Q3") == "2025-09-30"
        assert to_iso_date("2025-q1") == "2025-03-31"
        assert to_iso_date("2025-02") == "2025-02-28"
        assert to_iso_date("2024-02") == "2024-02-29"

    def test_to_iso_date_dates(self) -> None:
        """Dates, datetimes and ISO strings normalize to the calendar day."""
        assert to_iso_date(date(2024, 5, 1)) == "2024-05-01"
        assert to_iso_date(datetime(2024, 5, 1, 12, tzinfo=UTC)) == "2024-05-01"
        assert to_iso_date("2024-05-01T10:00:00Z") == "2024-05-01"

    def test_to_iso_date_invalid(self) -> None:
        """Unparseable values return None."""
        assert to_iso_date(None) is None
        assert to_iso_date("") is None
        assert to_iso_date("soon") is None

    def test_pick_latest_date(self) -> None:
        """The latest normalized value wins; garbage is ignored."""
        assert pick_latest_date(["2024-Q2", 2023, "bad", date(2024, 1, 15)]) == "2024-06-30"
        assert pick_latest_date([None, "bad"]) is None

    def test_month_end(self) -> None:
        """Month ends honour leap years."""
        assert month_end(2024, 2) == date(2024, 2, 29)
        assert month_end(2025, 12) == date(2025, 12, 31)


class TestCheckRange:
    """Tests for check_range."""

    def test_within_bounds(self) -> None:
        """In-range values are returned unchanged."""
        assert check_range("population", 48e6, 40e6, 60e6) == 48e6

    def test_out_of_bounds(self) -> None:
        """Out-of-range values raise RangeError naming the field."""
        with pytest.raises(RangeError, match="population"):
            check_range("population", 4.8e6, 40e6, 60e6)
