"""Exception hierarchy for the ingestion pipeline.

Transport and structural failures are raised inside a source routine and caught
at its boundary (:func:`cuentas_publicas.transformer.provenance.run_with_fallback`),
which substitutes the reference dataset. Validation mismatches are never raised;
see :mod:`cuentas_publicas.extractor.validation`.
"""

from __future__ import annotations

__all__ = [
    "CandidatesExhaustedError",
    "IngestionError",
    "RangeError",
    "StructuralError",
    "TransportError",
    "check_range",
]


class IngestionError(Exception):
    """Base class for failures that trigger a fallback substitution."""


class TransportError(IngestionError):
    """Network, timeout, or non-success status after the retry bound.

    Attributes
    ----------
    url : str
        Resource that could not be fetched.
    attempts : int
        Number of attempts made before giving up.
    """

    def __init__(self, url: str, attempts: int, reason: str) -> None:
        self.url = url
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"{reason} fetching {url} (after {attempts} attempts)")


class StructuralError(IngestionError):
    """Expected sheet, column, dimension or category absent or malformed."""


class RangeError(StructuralError):
    """Decoded value outside its documented sanity bound."""


class CandidatesExhaustedError(StructuralError):
    """Every candidate resource failed.

    Attributes
    ----------
    failures : list[tuple[str, str]]
        ``(candidate, reason)`` pairs in the order they were attempted.
    """

    def __init__(self, label: str, failures: list[tuple[str, str]]) -> None:
        self.label = label
        self.failures = failures
        detail = "; ".join(f"{candidate}: {reason}" for candidate, reason in failures)
        super().__init__(f"All candidates failed for {label}: {detail}")


def check_range(name: str, value: float, low: float, high: float) -> float:
    """Return ``value`` if it lies in ``[low, high]``, else raise :class:`RangeError`."""
    if not low <= value <= high:
        msg = f"{name} out of range: {value} (expected {low}-{high})"
        raise RangeError(msg)
    return value
