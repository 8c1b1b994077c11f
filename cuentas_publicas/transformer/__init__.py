"""Transformer module for aggregation, provenance and trend extrapolation.

Submodules
----------
aggregator
    Sub-period roll-ups with an all-or-nothing completeness filter.
provenance
    Field-level origin records, immutable dataset results, the ordered
    candidate-resource loop and the per-source fallback boundary.
regression
    Ordinary least squares used to derive per-second growth rates.

Key Classes
-----------
CompletenessAggregator
    Publishes a year only when all twelve months were observed.
DatasetResult
    Immutable output of one source routine.
ProvenanceTracker
    Collects per-field records while a routine runs.

Key Functions
-------------
run_with_fallback
    Converts transport and structural failures into the fallback dataset.
linear_regression
    Fit a line through ``(timestamp_ms, value)`` points.
"""

from cuentas_publicas.transformer.aggregator import (
    AnnualAggregate,
    CompletenessAggregator,
    PeriodObservation,
    Year,
    YearMonth,
    YearQuarter,
    thousands_to_millions,
)
from cuentas_publicas.transformer.provenance import (
    DatasetResult,
    OriginKind,
    ProvenanceRecord,
    ProvenanceTracker,
    run_with_fallback,
    try_candidates,
)
from cuentas_publicas.transformer.regression import LinearFit, linear_regression, predict

__all__ = [
    # Aggregation
    "AnnualAggregate",
    "CompletenessAggregator",
    # Provenance
    "DatasetResult",
    # Regression
    "LinearFit",
    "OriginKind",
    "PeriodObservation",
    "ProvenanceRecord",
    "ProvenanceTracker",
    "Year",
    "YearMonth",
    "YearQuarter",
    "linear_regression",
    "predict",
    "run_with_fallback",
    "thousands_to_millions",
    "try_candidates",
]
