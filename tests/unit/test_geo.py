"""Unit tests for GPS distance and location verification."""

import math

import pytest

from app.services.geo import (
    EARTH_RADIUS_M,
    distance_meters,
    validate_coordinates,
    verify_location,
)

STATION = (-1.2833, 36.8167)


def _north_of(lat: float, lng: float, meters: float) -> tuple[float, float]:
    """Point `meters` due north of (lat, lng)."""
    return lat + math.degrees(meters / EARTH_RADIUS_M), lng


class TestDistance:
    """Test haversine distance."""

    def test_same_point_is_zero(self):
        assert distance_meters(*STATION, *STATION) == 0

    def test_symmetric(self):
        a = (-1.2833, 36.8167)
        b = (-4.0435, 39.6682)
        assert distance_meters(*a, *b) == pytest.approx(distance_meters(*b, *a))

    def test_one_degree_of_latitude(self):
        # R * pi / 180
        assert distance_meters(0, 0, 1, 0) == pytest.approx(111_194.93, abs=0.5)

    def test_nairobi_to_mombasa(self):
        distance = distance_meters(-1.2833, 36.8167, -4.0435, 39.6682)
        assert 420_000 < distance < 460_000

    def test_validate_coordinates_rejects_out_of_range(self):
        with pytest.raises(ValueError, match="Latitude"):
            validate_coordinates(90.5, 0)
        with pytest.raises(ValueError, match="Longitude"):
            validate_coordinates(0, -181)

    def test_validate_coordinates_accepts_bounds(self):
        validate_coordinates(-90, 180)
        validate_coordinates(90, -180)


class TestVerifyLocation:
    """Test location verification against a station."""

    def test_within_default_radius(self, tally_config):
        submitted = _north_of(*STATION, 499.99)
        result = verify_location(*submitted, *STATION, config=tally_config)
        assert result["verified"] is True
        assert result["distance"] == 500
        assert result["skipped"] is False

    def test_outside_default_radius(self, tally_config):
        submitted = _north_of(*STATION, 501)
        result = verify_location(*submitted, *STATION, config=tally_config)
        assert result["verified"] is False
        assert result["distance"] == 501

    def test_station_radius_overrides_default(self, tally_config):
        submitted = _north_of(*STATION, 150)
        result = verify_location(*submitted, *STATION, 100, config=tally_config)
        assert result["verified"] is False

        result = verify_location(*submitted, *STATION, 200, config=tally_config)
        assert result["verified"] is True

    def test_distance_equal_to_radius_is_verified(self, tally_config):
        submitted = _north_of(*STATION, 320)
        d = distance_meters(*submitted, *STATION)

        assert verify_location(*submitted, *STATION, d, config=tally_config)["verified"] is True
        assert verify_location(*submitted, *STATION, d - 1, config=tally_config)["verified"] is False

    def test_default_radius_boundary(self, tally_config):
        at_radius = _north_of(*STATION, 500)
        radius = distance_meters(*at_radius, *STATION)
        config = tally_config.model_copy(update={"default_location_radius": radius})

        assert verify_location(*at_radius, *STATION, config=config)["verified"] is True

        one_meter_out = _north_of(*STATION, radius + 1)
        assert verify_location(*one_meter_out, *STATION, config=config)["verified"] is False

    def test_missing_station_radius_uses_default(self, tally_config):
        submitted = _north_of(*STATION, 450)
        assert verify_location(*submitted, *STATION, None, config=tally_config)["verified"]
        assert verify_location(*submitted, *STATION, 0, config=tally_config)["verified"]

    @pytest.mark.parametrize(
        "coords",
        [
            (None, 36.8167, -1.2833, 36.8167),
            (-1.2833, None, -1.2833, 36.8167),
            (-1.2833, 36.8167, None, 36.8167),
            (-1.2833, 36.8167, -1.2833, None),
        ],
    )
    def test_missing_coordinates_skip_check(self, tally_config, coords):
        result = verify_location(*coords, config=tally_config)
        assert result == {"verified": False, "distance": None, "skipped": True}
