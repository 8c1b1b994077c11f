"""Shared utility functions for cuentas_publicas package."""

from cuentas_publicas.utils.dates import pick_latest_date, to_iso_date
from cuentas_publicas.utils.parsing import (
    normalize_text,
    parse_cell_number,
    parse_international_number,
    parse_spanish_number,
)

__all__ = [
    "normalize_text",
    "parse_cell_number",
    "parse_international_number",
    "parse_spanish_number",
    "pick_latest_date",
    "to_iso_date",
]
