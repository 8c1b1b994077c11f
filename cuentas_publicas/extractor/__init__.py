"""Extractor module for decoding downloaded resources.

Key exports:
    parse_transposed_csv: Decode central-bank transposed CSV tables
    load_workbook_grids: Read every sheet of a workbook into cell grids
    find_header_row: Score candidate header rows by label matches
    discover_hierarchical_columns: Locate ``NN.M`` sub-items and totals
    JsonStatCube: Validated view over a JSON-stat response
    validate_component_sum: Tolerance check of components against a total
"""

from cuentas_publicas.extractor.cube import CubeObservation, JsonStatCube, flat_index
from cuentas_publicas.extractor.delimited import (
    TimeSeriesTable,
    build_column_map,
    find_column,
    parse_transposed_csv,
)
from cuentas_publicas.extractor.validation import (
    SumValidationResult,
    ValidationReport,
    compare_with_tolerance,
    validate_component_sum,
)
from cuentas_publicas.extractor.workbook import (
    HeaderMatch,
    HierarchicalColumns,
    discover_hierarchical_columns,
    find_header_row,
    find_year_sheets,
    load_workbook_grids,
    map_columns,
    select_sheet,
)

__all__ = [
    # Cube
    "CubeObservation",
    # Workbook
    "HeaderMatch",
    "HierarchicalColumns",
    "JsonStatCube",
    # Validation
    "SumValidationResult",
    # Delimited
    "TimeSeriesTable",
    "ValidationReport",
    "build_column_map",
    "compare_with_tolerance",
    "discover_hierarchical_columns",
    "find_column",
    "find_header_row",
    "find_year_sheets",
    "flat_index",
    "load_workbook_grids",
    "map_columns",
    "parse_transposed_csv",
    "select_sheet",
    "validate_component_sum",
]
