"""Tests for config.json integrity.

Tests cover:
1. JSON syntax and required sections
2. Typed accessors and their defaults
3. Source URL tables matching what each source routine reads
"""

from __future__ import annotations

import pytest

from cuentas_publicas.config import (
    CONFIG_DIR,
    get_config,
    get_cube_lookback_years,
    get_http_settings,
    get_source_urls,
    get_validation_tolerance,
)
from cuentas_publicas.runner import REGISTRY

# =============================================================================
# JSON Syntax and Sections
# =============================================================================


class TestJsonSyntax:
    """Tests that config.json is valid and complete."""

    def test_config_json_exists(self) -> None:
        """config.json should exist in the config directory."""
        assert (CONFIG_DIR / "config.json").exists()

    def test_required_sections(self) -> None:
        """Every top-level section the pipeline reads is present."""
        config = get_config()
        for section in ("http", "validation", "cube", "critical_sources", "sources"):
            assert section in config, f"Missing config section: {section}"

    def test_critical_sources_are_registered(self) -> None:
        """Critical sources must name registered datasets."""
        for key in get_config()["critical_sources"]:
            assert key in REGISTRY, f"Unknown critical source: {key}"


# =============================================================================
# Accessors
# =============================================================================


class TestAccessors:
    """Tests for the typed configuration accessors."""

    def test_http_settings(self) -> None:
        """Retry policy values are integers with sane bounds."""
        settings = get_http_settings()
        assert settings["max_retries"] >= 0
        assert settings["timeout_ms"] > 0
        assert settings["backoff_base_ms"] > 0

    def test_validation_tolerance(self) -> None:
        """Tolerance is a fraction with a positive floor."""
        pct, floor = get_validation_tolerance()
        assert 0 < pct < 1
        assert floor > 0

    def test_cube_lookback(self) -> None:
        """Lookback window is a positive number of years."""
        assert get_cube_lookback_years() > 0

    def test_unknown_source(self) -> None:
        """Unknown source tables raise KeyError."""
        with pytest.raises(KeyError):
            get_source_urls("catastro")


# =============================================================================
# Source URL Tables
# =============================================================================

REQUIRED_URLS = {
    "bde": ("debt_monthly_csv", "debt_quarterly_csv", "debt_api", "ccaa_debt_csv", "ccaa_debt_gdp_csv"),
    "aeat": ("series_xlsx", "delegaciones_xlsx"),
    "igae": ("cofog_xlsx",),
    "ine": ("series_api",),
    "seguridad_social": ("index_page", "base_url"),
    "hacienda": ("index_page",),
    "eurostat": ("api_base",),
}


class TestSourceUrls:
    """Each source routine finds the URLs it reads."""

    @pytest.mark.parametrize(("source", "keys"), list(REQUIRED_URLS.items()))
    def test_keys_present(self, source: str, keys: tuple[str, ...]) -> None:
        """Every URL key used by the routine is configured over https."""
        urls = get_source_urls(source)
        for key in keys:
            assert key in urls, f"{source}: missing {key}"
            assert urls[key].startswith("https://")

    def test_ine_template(self) -> None:
        """The INE series URL is a template on the series code."""
        assert "{code}" in get_source_urls("ine")["series_api"]
