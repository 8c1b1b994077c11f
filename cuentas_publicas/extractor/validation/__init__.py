"""Validation package: reconciliation checks that log but never block."""

from cuentas_publicas.extractor.validation.runner import (
    compare_with_tolerance,
    validate_component_sum,
)
from cuentas_publicas.extractor.validation.types import (
    SumValidationResult,
    ValidationReport,
)

__all__ = [
    # Types
    "SumValidationResult",
    "ValidationReport",
    # Runners
    "compare_with_tolerance",
    "validate_component_sum",
]
