import math

import pytest

from fieldbot.errors import InvalidInputError
from fieldbot.geodesy import (
    GeoPoint,
    TravelProfile,
    distance,
    duration,
    format_distance,
    format_duration,
    measure,
)

SURABAYA_WEST = GeoPoint(-7.257056, 112.648000)
SIDOARJO = GeoPoint(-7.6382862, 112.7372882)


def _law_of_cosines(p1: GeoPoint, p2: GeoPoint) -> float:
    phi1, phi2 = math.radians(p1.latitude), math.radians(p2.latitude)
    d_lambda = math.radians(p2.longitude - p1.longitude)
    c = math.sin(phi1) * math.sin(phi2) + math.cos(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return 6_371_000.0 * math.acos(min(1.0, max(-1.0, c)))


def test_distance_matches_independent_reference():
    d = distance(SURABAYA_WEST, SIDOARJO)
    assert abs(d - _law_of_cosines(SURABAYA_WEST, SIDOARJO)) < 1.0
    assert 43_400 < d < 43_650


def test_distance_is_symmetric_and_zero_for_same_point():
    assert distance(SURABAYA_WEST, SIDOARJO) == pytest.approx(distance(SIDOARJO, SURABAYA_WEST))
    assert distance(SIDOARJO, SIDOARJO) == 0.0


def test_antipodal_points_do_not_blow_up():
    d = distance(GeoPoint(0.0, 0.0), GeoPoint(0.0, 180.0))
    assert d == pytest.approx(math.pi * 6_371_000.0)


def test_car_measurement_of_the_sample_route():
    m = measure(SURABAYA_WEST, SIDOARJO, TravelProfile.CAR)
    assert m.distance_text == f"{m.distance_m / 1000:.2f} km"
    assert m.duration_text == "52 minutes"


def test_foot_measurement_runs_into_hours():
    m = measure(SURABAYA_WEST, SIDOARJO, TravelProfile.FOOT)
    assert m.duration_text == "8 hours 42 minutes"


def test_duration_uses_profile_speed():
    assert duration(1000, TravelProfile.FOOT) == pytest.approx(720.0)
    assert duration(1000, TravelProfile.MOTORCYCLE) == pytest.approx(90.0)
    assert duration(0, TravelProfile.CAR) == 0.0


@pytest.mark.parametrize(
    "meters, expected",
    [(0, "0 m"), (999.4, "999 m"), (1000, "1.00 km"), (43518.9, "43.52 km")],
)
def test_format_distance(meters, expected):
    assert format_distance(meters) == expected


@pytest.mark.parametrize(
    "seconds, expected",
    [(12.4, "12 seconds"), (59.9, "60 seconds"), (60, "1 minutes"), (3599, "59 minutes"), (7322, "2 hours 2 minutes")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


class TestGeoPoint:
    @pytest.mark.parametrize("text", ["-7.257056, 112.648", "-7.257056 112.648", "(-7.257056; 112.648)"])
    def test_parse_accepts_common_forms(self, text):
        p = GeoPoint.parse(text)
        assert (p.latitude, p.longitude) == (-7.257056, 112.648)

    @pytest.mark.parametrize("text", ["", "hello", "91, 10", "10, 181", "1,2,3"])
    def test_parse_rejects_garbage_and_out_of_range(self, text):
        with pytest.raises(InvalidInputError):
            GeoPoint.parse(text)

    def test_of_rejects_nan(self):
        with pytest.raises(InvalidInputError):
            GeoPoint.of(float("nan"), 0)

    def test_label_falls_back_to_coordinates(self):
        assert GeoPoint(1.5, 2.5).label() == "1.5, 2.5"
        assert GeoPoint(1.5, 2.5, "Town hall").label() == "Town hall"
