"""Validation dataclasses.

Pure data structures with no business-logic dependencies so decoders and
source routines can import them without cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = ["SumValidationResult", "ValidationReport"]


@dataclass(frozen=True)
class SumValidationResult:
    """Result of comparing a reported total with the sum of its components.

    Attributes
    ----------
    description : str
        What was validated (e.g. ``"AEAT 2024"``).
    expected_total : float
        Total as published.
    calculated_sum : float
        Sum of the independently reported components.
    match : bool
        True when the difference is within tolerance.
    difference : float
        ``|calculated_sum - expected_total|``.
    tolerance : float
        Allowed difference, ``max(total * tolerance_pct, floor)``.
    """

    description: str
    expected_total: float
    calculated_sum: float
    match: bool
    difference: float
    tolerance: float

    @property
    def status(self) -> str:
        """Human-readable status line."""
        if self.match:
            return "✓ Match"
        return f"✗ Mismatch (diff: {self.difference:,.2f})"

    @property
    def diagnostic(self) -> str:
        """Diagnostic naming both figures and the delta."""
        return (
            f"{self.description}: component sum {self.calculated_sum:,.2f} "
            f"!= total {self.expected_total:,.2f} (diff: {self.difference:,.2f}, "
            f"tolerance: {self.tolerance:,.2f})"
        )


@dataclass
class ValidationReport:
    """Validation results collected during one source routine."""

    sum_validations: list[SumValidationResult] = field(default_factory=list)

    def add(self, result: SumValidationResult) -> SumValidationResult:
        """Record a result and return it."""
        self.sum_validations.append(result)
        return result

    def has_failures(self) -> bool:
        """Return True when any recorded validation exceeded its tolerance."""
        return any(not v.match for v in self.sum_validations)

    @property
    def diagnostics(self) -> list[str]:
        """Diagnostic lines for every failed validation."""
        return [v.diagnostic for v in self.sum_validations if not v.match]
