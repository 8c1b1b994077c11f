"""Provenance records, dataset results and the per-source fallback boundary.

Every produced field carries a :class:`ProvenanceRecord` describing where its
value came from. A dataset may mix live and fallback fields, so records are
attached per field rather than per dataset.

Classes
-------
OriginKind
    Where a value came from: api, spreadsheet, delimited text, HTML scrape,
    fallback constant, or derived from other fields.
ProvenanceRecord
    Immutable origin metadata for one field.
DatasetResult
    Immutable output of one source routine.
ProvenanceTracker
    Collects records while a routine runs and builds the final result.

Functions
---------
try_candidates
    Ordered candidate-resource state machine with early exit.
run_with_fallback
    Per-source boundary converting transport/structural failures into the
    fallback dataset.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from cuentas_publicas.config import setup_logging
from cuentas_publicas.errors import CandidatesExhaustedError, IngestionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence

logger = setup_logging(__name__)

T = TypeVar("T")

__all__ = [
    "DatasetResult",
    "OriginKind",
    "ProvenanceRecord",
    "ProvenanceTracker",
    "frozen_copy",
    "run_with_fallback",
    "try_candidates",
]


class OriginKind(StrEnum):
    """Origin of a field value."""

    API = "api"
    SPREADSHEET = "spreadsheet"
    DELIMITED_TEXT = "delimited_text"
    HTML_SCRAPE = "html_scrape"
    FALLBACK = "fallback"
    DERIVED = "derived"


@dataclass(frozen=True)
class ProvenanceRecord:
    """Where a field's value came from and how current it is.

    Attributes
    ----------
    origin_kind : OriginKind
        Live origin type, ``fallback`` or ``derived``.
    label : str
        Human-readable source name (e.g. ``"BdE - CSV be11b"``).
    url : str or None
        Resource the value was read from, when there is one.
    observed_at : date or None
        Date the value refers to (end of the observed period).
    note : str or None
        Free text; derived fields name their inputs here.
    """

    origin_kind: OriginKind
    label: str
    url: str | None = None
    observed_at: date | None = None
    note: str | None = None

    @property
    def is_fallback(self) -> bool:
        """True when the value is a bundled reference constant."""
        return self.origin_kind is OriginKind.FALLBACK

    @property
    def is_live(self) -> bool:
        """True when the value was read from a live resource."""
        return self.origin_kind not in (OriginKind.FALLBACK, OriginKind.DERIVED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary, dropping empty optional fields."""
        data = asdict(self)
        data["origin_kind"] = self.origin_kind.value
        if self.observed_at is not None:
            data["observed_at"] = self.observed_at.isoformat()
        return {key: value for key, value in data.items() if value is not None}


def frozen_copy(value: Any) -> Any:
    """Return a read-only deep copy (mappings become ``MappingProxyType``, lists tuples)."""
    if isinstance(value, dict | MappingProxyType):
        return MappingProxyType({key: frozen_copy(item) for key, item in value.items()})
    if isinstance(value, list | tuple):
        return tuple(frozen_copy(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, MappingProxyType | dict):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple | list):
        return [_thaw(item) for item in value]
    if isinstance(value, date):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class DatasetResult:
    """Immutable output of one source routine.

    Attributes
    ----------
    source : str
        Dataset key (e.g. ``"debt"``).
    as_of : datetime
        When the ingestion run produced this result.
    periods_covered : tuple[str, ...]
        Periods present in ``data``, oldest first.
    data : Mapping[str, Any]
        Read-only nested structure of numbers and strings.
    provenance : Mapping[str, ProvenanceRecord]
        One record per logical field.
    """

    source: str
    as_of: datetime
    periods_covered: tuple[str, ...]
    data: Mapping[str, Any]
    provenance: Mapping[str, ProvenanceRecord]

    @property
    def fallback_fields(self) -> list[str]:
        """Fields whose value is a bundled reference constant."""
        return sorted(name for name, record in self.provenance.items() if record.is_fallback)

    @property
    def is_fallback(self) -> bool:
        """True when no field was read live (derived fields do not count as live)."""
        records = self.provenance.values()
        return any(r.is_fallback for r in records) and not any(r.is_live for r in records)

    def to_dict(self) -> dict[str, Any]:
        """Convert to plain JSON-ready structures."""
        return {
            "source": self.source,
            "as_of": self.as_of.isoformat(),
            "periods_covered": list(self.periods_covered),
            "data": _thaw(self.data),
            "provenance": {name: record.to_dict() for name, record in self.provenance.items()},
        }


@dataclass
class ProvenanceTracker:
    """Collect provenance records for one source routine.

    Attributes
    ----------
    source : str
        Dataset key used for the built result.
    records : dict[str, ProvenanceRecord]
        Field name to its record; later records replace earlier ones.
    """

    source: str
    records: dict[str, ProvenanceRecord] = field(default_factory=dict)

    def add(self, field_name: str, record: ProvenanceRecord) -> ProvenanceRecord:
        """Attach ``record`` to ``field_name``."""
        self.records[field_name] = record
        logger.debug("Provenance for '%s.%s': %s", self.source, field_name, record.origin_kind)
        return record

    def live(
        self,
        field_name: str,
        kind: OriginKind,
        label: str,
        url: str | None = None,
        observed_at: date | None = None,
        note: str | None = None,
    ) -> ProvenanceRecord:
        """Record a value read live from ``url``."""
        return self.add(field_name, ProvenanceRecord(kind, label, url, observed_at, note))

    def fallback(
        self,
        field_name: str,
        label: str,
        url: str | None = None,
        observed_at: date | None = None,
        note: str | None = None,
    ) -> ProvenanceRecord:
        """Record a value substituted from the bundled reference constants."""
        return self.add(
            field_name,
            ProvenanceRecord(OriginKind.FALLBACK, label, url, observed_at, note),
        )

    def derived(self, field_name: str, inputs: Sequence[str], note: str | None = None) -> ProvenanceRecord:
        """Record a value computed from other fields, naming them in the note."""
        detail = f"Derived from {', '.join(inputs)}"
        return self.add(
            field_name,
            ProvenanceRecord(
                OriginKind.DERIVED,
                "Cálculo derivado",
                note=f"{detail}. {note}" if note else detail,
            ),
        )

    def build(
        self,
        data: Mapping[str, Any],
        periods: Iterable[object] = (),
        as_of: datetime | None = None,
    ) -> DatasetResult:
        """Freeze ``data`` and the collected records into a :class:`DatasetResult`."""
        return DatasetResult(
            source=self.source,
            as_of=as_of or datetime.now(UTC),
            periods_covered=tuple(str(p) for p in periods),
            data=frozen_copy(dict(data)),
            provenance=MappingProxyType(dict(self.records)),
        )


# =============================================================================
# Candidate Resources and Fallback Boundary
# =============================================================================


async def try_candidates(
    label: str,
    candidates: Sequence[str],
    attempt: Callable[[str], Awaitable[T]],
) -> tuple[str, T]:
    """Try each candidate resource in order, stopping at the first success.

    Parameters
    ----------
    label : str
        Name used in logs and the final error.
    candidates : Sequence[str]
        Distinct resources (URLs, file names) in priority order.
    attempt : callable
        Coroutine function fetching and decoding one candidate.

    Returns
    -------
    tuple[str, T]
        The candidate that succeeded and its decoded value.

    Raises
    ------
    CandidatesExhaustedError
        If every candidate failed; each failure reason is attached.
    """
    failures: list[tuple[str, str]] = []
    for candidate in candidates:
        try:
            return candidate, await attempt(candidate)
        except (IngestionError, httpx.HTTPError) as err:
            logger.warning("%s: candidate %s failed: %s", label, candidate, err)
            failures.append((candidate, str(err)))
    raise CandidatesExhaustedError(label, failures)


async def run_with_fallback(
    source: str,
    live: Callable[[], Awaitable[DatasetResult]],
    fallback: Callable[[str], DatasetResult],
) -> DatasetResult:
    """Run a source's live routine, substituting the fallback dataset on failure.

    Transport and structural errors (including range violations) are caught
    here and never propagate past the source boundary.
    """
    try:
        result = await live()
    except (IngestionError, httpx.HTTPError) as err:
        logger.error("%s: live ingestion failed (%s); using reference values", source, err)
        return fallback(str(err))

    logger.info("%s: live ingestion succeeded (%d fields)", source, len(result.provenance))
    return result

