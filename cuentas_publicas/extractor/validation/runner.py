"""Cross-validation of aggregates produced two ways.

A reported total is compared with the sum of its independently reported
components. Mismatches are informational: they are logged and recorded, and
the aggregate is always accepted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cuentas_publicas.config import get_validation_tolerance, setup_logging
from cuentas_publicas.extractor.validation.types import SumValidationResult, ValidationReport

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = setup_logging(__name__)

__all__ = [
    "compare_with_tolerance",
    "validate_component_sum",
]


def compare_with_tolerance(
    total: float,
    component_sum: float,
    tolerance_pct: float,
    floor: float,
) -> tuple[bool, float, float]:
    """Compare a total with a component sum.

    Parameters
    ----------
    total
        Reported total.
    component_sum
        Independently summed components.
    tolerance_pct
        Relative tolerance (``0.01`` is 1%).
    floor
        Minimum absolute tolerance.

    Returns
    -------
    tuple
        ``(match, difference, tolerance)`` where match is True if
        ``|component_sum - total| <= max(|total| * tolerance_pct, floor)``.
    """
    difference = abs(component_sum - total)
    tolerance = max(abs(total) * tolerance_pct, floor)
    return difference <= tolerance, difference, tolerance


def validate_component_sum(
    description: str,
    total: float,
    components: Mapping[str, float],
    *,
    tolerance_pct: float | None = None,
    floor: float | None = None,
    report: ValidationReport | None = None,
) -> SumValidationResult:
    """Validate that ``components`` add up to ``total``; never raises.

    Tolerance defaults come from ``validation`` in ``config.json``. On a
    mismatch exactly one warning is logged, carrying both figures and the delta.
    """
    default_pct, default_floor = get_validation_tolerance()
    pct = default_pct if tolerance_pct is None else tolerance_pct
    minimum = default_floor if floor is None else floor

    component_sum = sum(components.values())
    match, difference, tolerance = compare_with_tolerance(total, component_sum, pct, minimum)

    result = SumValidationResult(
        description=description,
        expected_total=total,
        calculated_sum=component_sum,
        match=match,
        difference=difference,
        tolerance=tolerance,
    )
    if report is not None:
        report.add(result)

    if match:
        logger.debug("✓ %s: sum=%s matches total=%s", description, f"{component_sum:,}", f"{total:,}")
    else:
        logger.warning("✗ %s", result.diagnostic)
    return result
