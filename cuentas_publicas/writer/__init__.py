"""Writer module for JSON and Excel output.

Per-dataset JSON naming convention: ccaa-debt.json, tax-revenue.json, ...
Run metadata: meta.json
Summary workbook: resumen_fuentes.xlsx with Resumen and Procedencia sheets
"""

from cuentas_publicas.writer.excel_summary import (
    build_provenance_frame,
    build_summary_frame,
    write_summary_workbook,
)
from cuentas_publicas.writer.json_writer import (
    dataset_filename,
    save_dataset,
    save_meta,
    write_json,
)

__all__ = [
    # Excel summary
    "build_provenance_frame",
    "build_summary_frame",
    # JSON writer
    "dataset_filename",
    "save_dataset",
    "save_meta",
    "write_json",
    "write_summary_workbook",
]
