#!/usr/bin/env python3
"""Download every public-finance source and write the dataset files.

Usage:
    python -m cuentas_publicas.main                        # All sources
    python -m cuentas_publicas.main --sources debt budget  # Selected sources
    python -m cuentas_publicas.main --output-dir out/ --excel
    python -m cuentas_publicas.main --fail-on-fallback     # Strict mode for CI

Each dataset is written as ``<source>.json`` next to a ``meta.json`` summary.
Sources that cannot be read live are written from their reference values and
flagged as fallback; the run still exits 0 unless ``--fail-on-fallback`` is
given and a critical source fell back.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from cuentas_publicas.config import DATA_DIR, setup_logging
from cuentas_publicas.runner import REGISTRY, build_meta, run_all
from cuentas_publicas.writer import save_dataset, save_meta, write_summary_workbook

logger = setup_logging(__name__)


# =============================================================================
# CLI
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the ingestion CLI."""
    parser = argparse.ArgumentParser(
        description="Download Spanish public-finance data and write JSON datasets.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m cuentas_publicas.main                           # All sources
  python -m cuentas_publicas.main --sources debt pensions   # Subset
  python -m cuentas_publicas.main --excel                   # Plus summary workbook
  python -m cuentas_publicas.main --fail-on-fallback        # Strict mode for CI
        """,
    )
    parser.add_argument(
        "--sources",
        "-s",
        nargs="*",
        choices=sorted(REGISTRY),
        default=None,
        help="Datasets to download (default: all)",
    )
    parser.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        default=DATA_DIR / "output",
        help="Directory for JSON and Excel output (default: DATA_DIR/output)",
    )
    parser.add_argument("--excel", action="store_true", help="Also write the summary workbook")
    parser.add_argument(
        "--fail-on-fallback",
        action="store_true",
        help="Exit with error if a critical source fell back to reference values",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the requested sources and write their output.

    Returns
    -------
    int
        ``0`` on success; ``1`` when ``--fail-on-fallback`` is set and a
        critical source fell back.
    """
    args = build_parser().parse_args(argv)
    output_dir: Path = args.output_dir

    results = asyncio.run(run_all(args.sources or None))
    meta = build_meta(results)

    for result in results.values():
        save_dataset(result, output_dir)
    save_meta(meta, output_dir)

    if args.excel:
        write_summary_workbook(results, meta, output_dir)

    fallbacks = [key for key, info in meta["sources"].items() if info["is_fallback"]]
    logger.info("Done: %d datasets, %d on reference values", len(results), len(fallbacks))

    if args.fail_on_fallback and meta["critical_fallbacks"]:
        logger.error("Critical sources fell back: %s", ", ".join(meta["critical_fallbacks"]))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
