"""Decoder for sparse N-dimensional statistical cubes (JSON-stat 2.0).

A cube response lists its dimensions (``id``), their sizes (``size``), a
category-to-position map per dimension, and a flat ``value`` array addressed
by the row-major mixed-radix encoding of the per-dimension positions (the last
dimension varies fastest). ``value`` may be a dense list or a sparse mapping
keyed by the stringified flat offset.

Dimensions not of interest are assumed fixed at position 0, which holds when
the request already filtered them down to a single category.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cuentas_publicas.config import get_cube_lookback_years, setup_logging
from cuentas_publicas.errors import StructuralError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = setup_logging(__name__)

__all__ = ["CubeObservation", "JsonStatCube", "flat_index"]

_YEAR_PREFIX = re.compile(r"^(\d{4})")


def flat_index(positions: Sequence[int], sizes: Sequence[int]) -> int:
    """Return the row-major offset of ``positions`` in a cube of ``sizes``.

    Raises
    ------
    StructuralError
        If the lengths differ or a position is out of bounds.
    """
    if len(positions) != len(sizes):
        msg = f"Got {len(positions)} positions for {len(sizes)} dimensions"
        raise StructuralError(msg)

    offset = 0
    for position, size in zip(positions, sizes, strict=True):
        if not 0 <= position < size:
            msg = f"Position {position} out of bounds for dimension of size {size}"
            raise StructuralError(msg)
        offset = offset * size + position
    return offset


@dataclass(frozen=True)
class CubeObservation:
    """A single decoded value and the period it belongs to."""

    entity: str
    period: str
    value: float


class JsonStatCube:
    """Validated view over a JSON-stat dataset response."""

    def __init__(
        self,
        dimension_ids: list[str],
        sizes: list[int],
        indexes: dict[str, dict[str, int]],
        values: Mapping[int, float | None],
    ) -> None:
        self.dimension_ids = dimension_ids
        self.sizes = sizes
        self.indexes = indexes
        self.values = values

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> JsonStatCube:
        """Validate a decoded JSON document and build the cube.

        Raises
        ------
        StructuralError
            If ``id``/``size``/``dimension`` are missing or inconsistent, a
            dimension lacks a category index, or the value set is empty.
        """
        if not isinstance(payload, dict):
            msg = f"Cube response is not an object ({type(payload).__name__})"
            raise StructuralError(msg)
        dimension_ids = payload.get("id")
        sizes = payload.get("size")
        dimensions = payload.get("dimension")
        if not isinstance(dimension_ids, list) or not isinstance(sizes, list) or not isinstance(dimensions, dict):
            msg = "Cube response lacks id/size/dimension"
            raise StructuralError(msg)
        if len(dimension_ids) != len(sizes):
            msg = f"Cube declares {len(dimension_ids)} dimensions but {len(sizes)} sizes"
            raise StructuralError(msg)

        try:
            indexes = _decode_indexes(dimension_ids, dimensions)
            values = _decode_values(payload.get("value"))
            int_sizes = [int(s) for s in sizes]
        except (AttributeError, KeyError, TypeError, ValueError) as err:
            msg = f"Malformed cube response: {err}"
            raise StructuralError(msg) from err
        if not any(v is not None for v in values.values()):
            msg = "Cube response has an empty value set"
            raise StructuralError(msg)

        return cls(list(dimension_ids), int_sizes, indexes, values)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _axis(self, dim_id: str) -> int:
        try:
            return self.dimension_ids.index(dim_id)
        except ValueError:
            msg = f"Dimension '{dim_id}' not present in cube ({', '.join(self.dimension_ids)})"
            raise StructuralError(msg) from None

    def value_at(self, coordinates: Mapping[str, str]) -> float | None:
        """Return the value at the given categories; other dimensions use position 0."""
        positions = [0] * len(self.dimension_ids)
        for dim_id, category in coordinates.items():
            axis = self._axis(dim_id)
            index = self.indexes[dim_id]
            if category not in index:
                msg = f"Category '{category}' not in dimension '{dim_id}'"
                raise StructuralError(msg)
            positions[axis] = index[category]
        return self.values.get(flat_index(positions, self.sizes))

    def periods(self, time_dim: str = "time") -> list[str]:
        """Return the time categories ordered newest first."""
        self._axis(time_dim)
        return sorted(self.indexes[time_dim], key=lambda p: self.indexes[time_dim][p], reverse=True)

    def latest_value(
        self,
        entity: str,
        entity_dim: str = "geo",
        time_dim: str = "time",
        lookback: int | None = None,
    ) -> CubeObservation | None:
        """Return the most recent non-null observation for ``entity``.

        Periods are scanned newest first and restricted to ``lookback`` years
        before the newest period in the cube (config ``cube.lookback_years``
        when ``None``).

        Raises
        ------
        StructuralError
            If either dimension is absent or ``entity`` is not a category.
        """
        self._axis(entity_dim)
        if entity not in self.indexes[entity_dim]:
            msg = f"Entity '{entity}' not in dimension '{entity_dim}'"
            raise StructuralError(msg)

        window = get_cube_lookback_years() if lookback is None else lookback
        periods = self.periods(time_dim)
        newest_year = _period_year(periods[0]) if periods else None

        for period in periods:
            year = _period_year(period)
            if newest_year is not None and year is not None and year < newest_year - window:
                break
            value = self.value_at({entity_dim: entity, time_dim: period})
            if value is not None:
                return CubeObservation(entity=entity, period=period, value=value)
        return None

    def decode_latest(
        self,
        entities: Sequence[str],
        entity_dim: str = "geo",
        time_dim: str = "time",
        lookback: int | None = None,
    ) -> dict[str, CubeObservation]:
        """Decode the most recent observation per entity; entities with none are omitted."""
        decoded: dict[str, CubeObservation] = {}
        for entity in entities:
            observation = self.latest_value(entity, entity_dim, time_dim, lookback)
            if observation is None:
                logger.debug("No value for %s within lookback", entity)
                continue
            decoded[entity] = observation
        return decoded

    def series(self, entity: str, entity_dim: str = "geo", time_dim: str = "time") -> dict[str, float]:
        """Return every non-null ``period -> value`` for ``entity``, oldest first."""
        self._axis(entity_dim)
        if entity not in self.indexes[entity_dim]:
            msg = f"Entity '{entity}' not in dimension '{entity_dim}'"
            raise StructuralError(msg)

        result: dict[str, float] = {}
        for period in reversed(self.periods(time_dim)):
            value = self.value_at({entity_dim: entity, time_dim: period})
            if value is not None:
                result[period] = value
        return result


def _period_year(period: str) -> int | None:
    match = _YEAR_PREFIX.match(period)
    return int(match.group(1)) if match else None


def _decode_indexes(dimension_ids: Sequence[str], dimensions: Mapping[str, Any]) -> dict[str, dict[str, int]]:
    indexes: dict[str, dict[str, int]] = {}
    for dim_id in dimension_ids:
        category = (dimensions.get(dim_id) or {}).get("category") or {}
        raw_index = category.get("index")
        if isinstance(raw_index, list):
            indexes[dim_id] = {code: pos for pos, code in enumerate(raw_index)}
        elif isinstance(raw_index, dict) and raw_index:
            indexes[dim_id] = {code: int(pos) for code, pos in raw_index.items()}
        elif len(category.get("label") or {}) == 1:
            # A single-category dimension may omit its index
            indexes[dim_id] = {next(iter(category["label"])): 0}
        else:
            msg = f"Dimension '{dim_id}' has no category index"
            raise StructuralError(msg)
    return indexes


def _decode_values(raw_values: object) -> dict[int, float | None]:
    if isinstance(raw_values, list):
        items = enumerate(raw_values)
    elif isinstance(raw_values, dict):
        items = ((int(key), value) for key, value in raw_values.items())
    else:
        return {}
    return {offset: None if value is None else float(value) for offset, value in items}
