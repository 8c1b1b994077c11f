"""Excel summary workbook for an ingestion run.

Output layout:

``Resumen``
    One row per dataset: as-of timestamp, live/fallback status, last real
    data date, and the fields that were substituted.
``Procedencia``
    One row per (dataset, field) with the full provenance record.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pandas as pd

from cuentas_publicas.config import DATA_DIR, setup_logging

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from cuentas_publicas.transformer.provenance import DatasetResult

logger = setup_logging(__name__)

__all__ = ["build_provenance_frame", "build_summary_frame", "write_summary_workbook"]

SUMMARY_FILENAME = "resumen_fuentes.xlsx"

SUMMARY_COLUMNS = [
    "source",
    "as_of",
    "is_fallback",
    "critical",
    "last_real_data_date",
    "periods",
    "fallback_fields",
]
PROVENANCE_COLUMNS = ["source", "field", "origin_kind", "label", "url", "observed_at", "note"]


def build_summary_frame(meta: Mapping[str, Any]) -> pd.DataFrame:
    """Flatten ``meta["sources"]`` into one row per dataset."""
    rows: list[dict[str, Any]] = []
    for source, info in meta.get("sources", {}).items():
        rows.append(
            {
                "source": source,
                "as_of": info.get("as_of"),
                "is_fallback": info.get("is_fallback"),
                "critical": info.get("critical"),
                "last_real_data_date": info.get("last_real_data_date"),
                "periods": info.get("periods"),
                "fallback_fields": ", ".join(info.get("fallback_fields", [])),
            }
        )
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def build_provenance_frame(results: Mapping[str, DatasetResult]) -> pd.DataFrame:
    """One row per provenance record across every dataset."""
    rows: list[dict[str, Any]] = []
    for source, result in results.items():
        for field_name, record in sorted(result.provenance.items()):
            rows.append({"source": source, "field": field_name, **record.to_dict()})
    return pd.DataFrame(rows, columns=PROVENANCE_COLUMNS)


def write_summary_workbook(
    results: Mapping[str, DatasetResult],
    meta: Mapping[str, Any],
    output_dir: Path | None = None,
) -> Path:
    """Write the run summary workbook.

    Parameters
    ----------
    results
        Dataset results keyed by source.
    meta
        Output of :func:`cuentas_publicas.runner.build_meta`.
    output_dir
        Destination directory; defaults to ``DATA_DIR/output``.

    Returns
    -------
    Path
        Location of the written workbook.
    """
    save_dir = output_dir if output_dir is not None else DATA_DIR / "output"
    save_dir.mkdir(parents=True, exist_ok=True)
    filepath = save_dir / SUMMARY_FILENAME

    sheets = {
        "Resumen": build_summary_frame(meta),
        "Procedencia": build_provenance_frame(results),
    }
    with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
        for sheet_name, df in sheets.items():
            # Excel sheet names max 31 chars
            df.to_excel(writer, sheet_name=sheet_name[:31], index=False)

    logger.info("Saved summary workbook: %s (%d datasets)", filepath, len(results))
    return filepath
