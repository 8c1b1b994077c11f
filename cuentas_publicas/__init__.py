"""cuentas-publicas: ingestion of Spanish public-finance statistics.

The package downloads national debt, tax revenue, budget, demographic,
pension, regional fiscal-balance and EU comparison data from the official
publishers, validates it, and emits one JSON dataset per source with field
level provenance.

Architecture
------------
* ``scraper``: httpx client with bounded retries and exponential backoff.
* ``extractor``: decoders for transposed CSV, spreadsheet grids (openpyxl) and
  JSON-stat cubes, plus component-sum cross-validation.
* ``transformer``: completeness aggregation, provenance/fallback handling and
  the linear trend used for per-second rates.
* ``sources``: one module per publisher (BdE, AEAT, IGAE, INE, Seguridad
  Social, Hacienda, Eurostat).
* ``writer``: per-source JSON, ``meta.json`` and the Excel summary workbook.

Configuration
-------------
Tunables (retry policy, validation tolerance, cube lookback, URLs) live in
``config/config.json``. Paths default to the ``data/`` and ``logs/`` trees but
respect ``DATA_DIR``, ``LOGS_DIR`` and ``CONFIG_DIR`` overrides, which may be
set in a ``.env`` file.

Entrypoints
-----------
The runnable module is :mod:`cuentas_publicas.main`, which runs every source
concurrently and writes the datasets.

Examples
--------
Download everything:

    >>> python -m cuentas_publicas.main

Only debt and pensions, with the summary workbook:

    >>> python -m cuentas_publicas.main --sources debt pensions --excel
"""

__version__ = "0.1.0"
__all__ = ["__version__"]


def get_version() -> str:
    """Return the current package version string.

    Returns
    -------
    str
        Semantic version identifier (e.g., ``"0.1.0"``).
    """
    return __version__


__all__.append("get_version")
