"""Tests for the JSON-stat cube decoder."""

from __future__ import annotations

import pytest

from cuentas_publicas.errors import StructuralError
from cuentas_publicas.extractor.cube import JsonStatCube, flat_index

TIMES = ["2019", "2020", "2021", "2022", "2023"]


class TestFlatIndex:
    """Tests for flat_index."""

    def test_row_major_offset(self) -> None:
        """The last dimension varies fastest."""
        assert flat_index([0, 0, 0], [1, 3, 5]) == 0
        assert flat_index([0, 2, 4], [1, 3, 5]) == 14
        assert flat_index([1, 1], [2, 3]) == 4

    def test_out_of_bounds(self) -> None:
        """Positions outside their dimension are rejected."""
        with pytest.raises(StructuralError):
            flat_index([0, 3], [2, 3])

    def test_length_mismatch(self) -> None:
        """Positions must match the number of dimensions."""
        with pytest.raises(StructuralError):
            flat_index([0], [2, 3])


class TestFromPayload:
    """Tests for JsonStatCube.from_payload validation."""

    def test_list_and_dict_values_agree(self, cube_payload) -> None:
        """Dense list values decode the same as sparse dict values."""
        sparse = cube_payload(["ES", "DE"], ["2022", "2023"], {("ES", "2023"): 105.1, ("DE", "2022"): 66.1})
        dense = {**sparse, "value": [None, 105.1, 66.1, None]}

        for payload in (sparse, dense):
            cube = JsonStatCube.from_payload(payload)
            assert cube.value_at({"geo": "ES", "time": "2023"}) == pytest.approx(105.1)
            assert cube.value_at({"geo": "DE", "time": "2023"}) is None

    def test_missing_keys(self) -> None:
        """A response without id/size/dimension is structural failure."""
        with pytest.raises(StructuralError, match="id/size/dimension"):
            JsonStatCube.from_payload({"value": [1]})

    def test_non_object_response(self) -> None:
        """A list response is structural failure."""
        with pytest.raises(StructuralError, match="not an object"):
            JsonStatCube.from_payload([1, 2])

    def test_non_numeric_value(self, cube_payload) -> None:
        """A non-numeric cell is structural failure, not a ValueError."""
        payload = cube_payload(["ES"], ["2023"], {("ES", "2023"): 1.0})
        payload["value"] = {"0": "n/d"}

        with pytest.raises(StructuralError, match="Malformed cube response"):
            JsonStatCube.from_payload(payload)

    def test_non_object_dimension(self, cube_payload) -> None:
        """A dimension entry that is not an object is structural failure."""
        payload = cube_payload(["ES"], ["2023"], {("ES", "2023"): 1.0})
        payload["dimension"]["geo"] = "ES"

        with pytest.raises(StructuralError, match="Malformed cube response"):
            JsonStatCube.from_payload(payload)

    def test_missing_category_index(self, cube_payload) -> None:
        """A dimension without a usable category index is rejected."""
        payload = cube_payload(["ES"], ["2023"], {("ES", "2023"): 1.0})
        payload["dimension"]["geo"]["category"] = {}

        with pytest.raises(StructuralError, match="no category index"):
            JsonStatCube.from_payload(payload)

    def test_empty_values(self, cube_payload) -> None:
        """An all-null value set is rejected."""
        payload = cube_payload(["ES"], ["2023"], {})

        with pytest.raises(StructuralError, match="empty value set"):
            JsonStatCube.from_payload(payload)

    def test_single_label_dimension_without_index(self, cube_payload) -> None:
        """A one-category dimension may omit its index."""
        payload = cube_payload(["ES"], ["2023"], {("ES", "2023"): 2.5}, extra_dims={"unit": "PC_GDP"})
        payload["dimension"]["unit"]["category"].pop("index")

        cube = JsonStatCube.from_payload(payload)

        assert cube.value_at({"geo": "ES", "time": "2023"}) == 2.5


class TestLatestValue:
    """Tests for most-recent-available lookups."""

    def test_newest_non_null(self, cube_payload) -> None:
        """Null recent periods are skipped in favour of the newest value."""
        payload = cube_payload(
            ["ES", "DE"],
            TIMES,
            {("ES", "2023"): 105.1, ("ES", "2022"): 109.5, ("DE", "2022"): 66.1},
            extra_dims={"unit": "PC_GDP", "sector": "S13"},
        )
        cube = JsonStatCube.from_payload(payload)

        es = cube.latest_value("ES", lookback=3)
        de = cube.latest_value("DE", lookback=3)

        assert (es.period, es.value) == ("2023", pytest.approx(105.1))
        assert (de.period, de.value) == ("2022", pytest.approx(66.1))

    def test_lookback_window(self, cube_payload) -> None:
        """Values older than the lookback window are not returned."""
        cube = JsonStatCube.from_payload(cube_payload(["ES"], TIMES, {("ES", "2019"): 95.0}))

        assert cube.latest_value("ES", lookback=3) is None
        assert cube.latest_value("ES", lookback=4).value == 95.0

    def test_absent_entity(self, cube_payload) -> None:
        """An entity outside the geo dimension is a structural error."""
        cube = JsonStatCube.from_payload(cube_payload(["ES"], TIMES, {("ES", "2023"): 1.0}))

        with pytest.raises(StructuralError, match="FR"):
            cube.latest_value("FR")

    def test_absent_dimension(self, cube_payload) -> None:
        """Asking for a dimension the cube lacks is a structural error."""
        cube = JsonStatCube.from_payload(cube_payload(["ES"], TIMES, {("ES", "2023"): 1.0}))

        with pytest.raises(StructuralError, match="country"):
            cube.latest_value("ES", entity_dim="country")

    def test_decode_latest_omits_missing(self, cube_payload) -> None:
        """Entities without data in the window are left out."""
        cube = JsonStatCube.from_payload(
            cube_payload(["ES", "PT", "EL"], TIMES, {("ES", "2023"): 3.5, ("PT", "2021"): 1.2}),
        )

        decoded = cube.decode_latest(["ES", "PT", "EL"], lookback=3)

        assert set(decoded) == {"ES", "PT"}
        assert decoded["PT"].period == "2021"

    def test_series_ascending(self, cube_payload) -> None:
        """series returns every non-null period, oldest first."""
        cube = JsonStatCube.from_payload(
            cube_payload(["ES"], TIMES, {("ES", "2023"): 3.0, ("ES", "2020"): 1.0, ("ES", "2021"): 2.0}),
        )

        assert list(cube.series("ES").items()) == [("2020", 1.0), ("2021", 2.0), ("2023", 3.0)]
