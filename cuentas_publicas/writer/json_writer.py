"""JSON output for ingested datasets.

Naming convention: one file per dataset key with underscores turned into
hyphens (``ccaa_debt`` -> ``ccaa-debt.json``) plus ``meta.json`` describing
the run.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import DATA_DIR, setup_logging

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from cuentas_publicas.transformer.provenance import DatasetResult

logger = setup_logging(__name__)

__all__ = ["dataset_filename", "save_dataset", "save_meta", "write_json"]

META_FILENAME = "meta.json"


def dataset_filename(source: str) -> str:
    """Return the JSON file name for a dataset key."""
    return f"{source.lower().replace('_', '-')}.json"


def write_json(payload: Mapping[str, Any], filepath: Path) -> Path:
    """Write ``payload`` as pretty-printed UTF-8 JSON, creating parent directories."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with filepath.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False, default=str)
    return filepath


def save_dataset(result: DatasetResult, output_dir: Path | None = None) -> Path:
    """Save one dataset result.

    Parameters
    ----------
    result
        Dataset to serialize via :meth:`DatasetResult.to_dict`.
    output_dir
        Destination directory; defaults to ``DATA_DIR/output``.

    Returns
    -------
    Path
        Location of the written JSON file.
    """
    save_dir = output_dir if output_dir is not None else DATA_DIR / "output"
    filepath = write_json(result.to_dict(), save_dir / dataset_filename(result.source))

    status = "fallback" if result.is_fallback else "live"
    logger.info("Saved %s (%s): %s", result.source, status, filepath)
    return filepath


def save_meta(meta: Mapping[str, Any], output_dir: Path | None = None) -> Path:
    """Save the run metadata as ``meta.json``."""
    save_dir = output_dir if output_dir is not None else DATA_DIR / "output"
    filepath = write_json(meta, save_dir / META_FILENAME)
    logger.info("Saved run metadata: %s", filepath)
    return filepath
