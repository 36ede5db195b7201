from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .errors import InvalidInputError

EARTH_RADIUS_M = 6_371_000.0

_COORD_RE = re.compile(
    r"^\s*\(?\s*(-?\d+(?:\.\d+)?)\s*[,;\s]\s*(-?\d+(?:\.\d+)?)\s*\)?\s*$"
)


class TravelProfile(str, Enum):
    FOOT = "foot"
    MOTORCYCLE = "motorcycle"
    CAR = "car"

    @property
    def speed_kmh(self) -> float:
        return _SPEEDS_KMH[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


# Average speeds used only for the time estimate
_SPEEDS_KMH = {
    TravelProfile.FOOT: 5.0,
    TravelProfile.MOTORCYCLE: 40.0,
    TravelProfile.CAR: 50.0,
}

_LABELS = {
    TravelProfile.FOOT: "On foot",
    TravelProfile.MOTORCYCLE: "Motorcycle",
    TravelProfile.CAR: "Car",
}


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    address: Optional[str] = None

    @staticmethod
    def of(latitude: float, longitude: float) -> "GeoPoint":
        """Validated constructor; raises InvalidInputError when out of range."""
        try:
            lat = float(latitude)
            lon = float(longitude)
        except (TypeError, ValueError):
            raise InvalidInputError(f"not a coordinate pair: {latitude!r}, {longitude!r}")
        if math.isnan(lat) or math.isnan(lon):
            raise InvalidInputError("coordinates must be numbers")
        if not -90.0 <= lat <= 90.0:
            raise InvalidInputError(f"latitude {lat} is outside [-90, 90]")
        if not -180.0 <= lon <= 180.0:
            raise InvalidInputError(f"longitude {lon} is outside [-180, 180]")
        return GeoPoint(lat, lon)

    @staticmethod
    def parse(text: str) -> "GeoPoint":
        """Parse "lat, lon" (also "lat lon" or "(lat; lon)")."""
        m = _COORD_RE.match(text or "")
        if not m:
            raise InvalidInputError(f"cannot read coordinates from {text!r}")
        return GeoPoint.of(m.group(1), m.group(2))

    def with_address(self, address: Optional[str]) -> "GeoPoint":
        return replace(self, address=address)

    def coords_text(self, digits: Optional[int] = None) -> str:
        if digits is None:
            return f"{self.latitude}, {self.longitude}"
        return f"{self.latitude:.{digits}f}, {self.longitude:.{digits}f}"

    def label(self) -> str:
        return self.address or self.coords_text()


@dataclass(frozen=True)
class Measurement:
    first: GeoPoint
    second: GeoPoint
    profile: TravelProfile
    distance_m: float
    duration_s: float

    @property
    def distance_text(self) -> str:
        return format_distance(self.distance_m)

    @property
    def duration_text(self) -> str:
        return format_duration(self.duration_s)

    def as_payload(self) -> dict:
        return {
            "first": {"lat": self.first.latitude, "lon": self.first.longitude, "address": self.first.address},
            "second": {"lat": self.second.latitude, "lon": self.second.longitude, "address": self.second.address},
            "profile": self.profile.value,
            "distance_m": round(self.distance_m, 2),
            "duration_s": round(self.duration_s, 2),
        }


def distance(p1: GeoPoint, p2: GeoPoint) -> float:
    """Great-circle distance in meters (haversine, mean Earth radius)."""
    phi1 = math.radians(p1.latitude)
    phi2 = math.radians(p2.latitude)
    d_phi = math.radians(p2.latitude - p1.latitude)
    d_lambda = math.radians(p2.longitude - p1.longitude)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # rounding can push a a hair above 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def duration(distance_m: float, profile: TravelProfile) -> float:
    """Estimated travel time in seconds at the profile's average speed."""
    if distance_m <= 0:
        return 0.0
    meters_per_second = profile.speed_kmh * 1000.0 / 3600.0
    return distance_m / meters_per_second


def measure(p1: GeoPoint, p2: GeoPoint, profile: TravelProfile) -> Measurement:
    d = distance(p1, p2)
    return Measurement(first=p1, second=p2, profile=profile, distance_m=d, duration_s=duration(d, profile))


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.2f} km"


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{round(seconds)} seconds"
    if seconds < 3600:
        return f"{math.floor(seconds / 60)} minutes"
    hours = math.floor(seconds / 3600)
    minutes = math.floor((seconds % 3600) / 60)
    return f"{hours} hours {minutes} minutes"
