"""Concurrent orchestration of every source routine.

Every registered routine runs at the same time; one source failing never
affects another. A routine that raises despite its own fallback boundary is
replaced by its registered fallback dataset, so :func:`run_all` always
returns one result per requested source.

Functions
---------
run_all
    Run the requested sources concurrently.
build_meta
    Summarize a run: per-source freshness, fallback flags, critical sources.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import get_config, setup_logging
from cuentas_publicas.sources import aeat, bde, eurostat, hacienda, igae, ine, seguridad_social
from cuentas_publicas.utils.dates import pick_latest_date

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

    from cuentas_publicas.transformer.provenance import DatasetResult

logger = setup_logging(__name__)

__all__ = ["REGISTRY", "SourceRoutine", "build_meta", "critical_sources", "run_all"]

DEFAULT_CRITICAL_SOURCES = ("debt", "demographics", "pensions", "budget")


@dataclass(frozen=True)
class SourceRoutine:
    """A dataset's live routine paired with its fallback builder."""

    fetch: Callable[[], Awaitable[DatasetResult]]
    fallback: Callable[[str], DatasetResult]


REGISTRY: dict[str, SourceRoutine] = {
    "debt": SourceRoutine(bde.fetch_debt_data, bde.build_debt_fallback),
    "ccaa_debt": SourceRoutine(bde.fetch_ccaa_debt_data, bde.build_ccaa_debt_fallback),
    "demographics": SourceRoutine(ine.fetch_demographics_data, ine.build_demographics_fallback),
    "pensions": SourceRoutine(
        seguridad_social.fetch_pensions_data,
        seguridad_social.build_pensions_fallback,
    ),
    "budget": SourceRoutine(igae.fetch_budget_data, igae.build_budget_fallback),
    "tax_revenue": SourceRoutine(aeat.fetch_tax_revenue_data, aeat.build_tax_revenue_fallback),
    "ccaa_fiscal_balance": SourceRoutine(
        hacienda.fetch_ccaa_fiscal_balance_data,
        hacienda.build_fiscal_balance_fallback,
    ),
    "eurostat": SourceRoutine(eurostat.fetch_eurostat_data, eurostat.build_eurostat_fallback),
    "revenue": SourceRoutine(eurostat.fetch_revenue_data, eurostat.build_revenue_fallback),
}


def critical_sources() -> tuple[str, ...]:
    """Return the dataset keys whose fallback fails a strict run."""
    return tuple(get_config().get("critical_sources", DEFAULT_CRITICAL_SOURCES))


# =============================================================================
# Run
# =============================================================================


async def run_all(
    sources: Iterable[str] | None = None,
    registry: Mapping[str, SourceRoutine] | None = None,
) -> dict[str, DatasetResult]:
    """Run the requested source routines concurrently.

    Parameters
    ----------
    sources : Iterable[str], optional
        Dataset keys to run; defaults to every registered key.
    registry : Mapping[str, SourceRoutine], optional
        Routine table; defaults to :data:`REGISTRY`.

    Returns
    -------
    dict[str, DatasetResult]
        One result per requested key, in request order.

    Raises
    ------
    KeyError
        If a requested key is not registered.
    """
    table = registry if registry is not None else REGISTRY
    keys = list(sources) if sources is not None else list(table)
    unknown = [key for key in keys if key not in table]
    if unknown:
        msg = f"Unknown sources: {', '.join(unknown)} (available: {', '.join(table)})"
        raise KeyError(msg)

    logger.info("Running %d sources: %s", len(keys), ", ".join(keys))
    outcomes = await asyncio.gather(*(table[key].fetch() for key in keys), return_exceptions=True)

    results: dict[str, DatasetResult] = {}
    for key, outcome in zip(keys, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.error("%s: routine raised %s: %s", key, type(outcome).__name__, outcome)
            results[key] = table[key].fallback(f"{type(outcome).__name__}: {outcome}")
        else:
            results[key] = outcome

    live = [key for key, result in results.items() if not result.is_fallback]
    logger.info("Live sources: %d/%d", len(live), len(results))
    return results


# =============================================================================
# Metadata
# =============================================================================


def _last_real_data_date(result: DatasetResult) -> str | None:
    candidates: list[object] = list(result.periods_covered[-1:])
    candidates.extend(record.observed_at for record in result.provenance.values())
    return pick_latest_date(candidates)


def build_meta(
    results: Mapping[str, DatasetResult],
    critical: Iterable[str] | None = None,
    generated_at: datetime | None = None,
) -> dict[str, Any]:
    """Summarize a run for ``meta.json``.

    Parameters
    ----------
    results : Mapping[str, DatasetResult]
        Output of :func:`run_all`.
    critical : Iterable[str], optional
        Critical dataset keys; defaults to :func:`critical_sources`.
    generated_at : datetime, optional
        Run timestamp; defaults to now (UTC).

    Returns
    -------
    dict[str, Any]
        ``last_download``, ``critical_sources``, ``critical_fallbacks`` and a
        ``sources`` table with ``as_of``, ``is_fallback``, ``fallback_fields``,
        ``critical``, ``last_real_data_date`` and ``periods`` per dataset.
    """
    critical_keys = tuple(critical) if critical is not None else critical_sources()
    timestamp = generated_at or datetime.now(UTC)

    sources: dict[str, dict[str, Any]] = {}
    for key, result in results.items():
        sources[key] = {
            "as_of": result.as_of.isoformat(),
            "is_fallback": result.is_fallback,
            "fallback_fields": result.fallback_fields,
            "critical": key in critical_keys,
            "last_real_data_date": _last_real_data_date(result),
            "periods": len(result.periods_covered),
        }

    critical_fallbacks = [key for key in critical_keys if key in results and results[key].is_fallback]
    if critical_fallbacks:
        logger.warning("Critical sources on reference values: %s", ", ".join(critical_fallbacks))

    return {
        "last_download": timestamp.isoformat(),
        "critical_sources": list(critical_keys),
        "critical_fallbacks": critical_fallbacks,
        "sources": sources,
    }
