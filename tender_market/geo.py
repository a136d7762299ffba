"""
Geolocation helpers: GPS parsing, haversine distance, bounding boxes.

Coordinates travel as "latitude,longitude" strings in profiles and tenders.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar

from tender_market.errors import InvalidCoordinates

EARTH_RADIUS_M = 6_371_000.0

T = TypeVar('T')


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, point: Coordinates) -> bool:
        return (
            self.min_lat <= point.latitude <= self.max_lat
            and self.min_lon <= point.longitude <= self.max_lon
        )


def is_valid_coordinates(latitude: float, longitude: float) -> bool:
    return (
        math.isfinite(latitude) and math.isfinite(longitude)
        and -90 <= latitude <= 90
        and -180 <= longitude <= 180
    )


def parse_coordinates(text: str) -> Coordinates:
    """
    Parse a "latitude,longitude" string.

    Raises:
        InvalidCoordinates: wrong token count, non-numeric token or out of range
    """
    if not isinstance(text, str):
        raise InvalidCoordinates(repr(text), "expected a string")

    parts = [part.strip() for part in text.split(',')]
    if len(parts) != 2:
        raise InvalidCoordinates(text, "expected exactly two comma-separated values")

    try:
        latitude = float(parts[0])
        longitude = float(parts[1])
    except ValueError:
        raise InvalidCoordinates(text, "values must be numeric")

    if not is_valid_coordinates(latitude, longitude):
        raise InvalidCoordinates(text, "latitude must be in [-90, 90] and longitude in [-180, 180]")

    return Coordinates(latitude, longitude)


def try_parse_coordinates(text: Optional[str]) -> Optional[Coordinates]:
    """Like parse_coordinates, but None for missing or malformed input."""
    if not text:
        return None
    try:
        return parse_coordinates(text)
    except InvalidCoordinates:
        return None


def format_coordinates(coords: Coordinates) -> str:
    return f"{coords.latitude},{coords.longitude}"


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    """Great-circle (haversine) distance in meters."""
    if a == b:
        return 0.0

    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def distance_km(a: Coordinates, b: Coordinates) -> float:
    return distance_meters(a, b) / 1000


def bounding_box(center: Coordinates, radius_meters: float) -> BoundingBox:
    """
    Angular box around ``center`` used as a cheap pre-filter.

    Membership is still decided by distance_meters. Near the poles or across
    the antimeridian the box widens to the full longitude range.
    """
    angular = radius_meters / EARTH_RADIUS_M
    lat = math.radians(center.latitude)
    lon = math.radians(center.longitude)

    min_lat = lat - angular
    max_lat = lat + angular

    lat_limit = math.pi / 2
    if min_lat <= -lat_limit or max_lat >= lat_limit:
        return BoundingBox(
            min_lat=math.degrees(max(min_lat, -lat_limit)),
            max_lat=math.degrees(min(max_lat, lat_limit)),
            min_lon=-180.0,
            max_lon=180.0,
        )

    d_lon = math.asin(min(1.0, math.sin(angular) / math.cos(lat)))
    min_lon = math.degrees(lon - d_lon)
    max_lon = math.degrees(lon + d_lon)
    if min_lon < -180 or max_lon > 180:
        min_lon, max_lon = -180.0, 180.0

    return BoundingBox(
        min_lat=math.degrees(min_lat),
        max_lat=math.degrees(max_lat),
        min_lon=min_lon,
        max_lon=max_lon,
    )


def _gps_of(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        return item.get('gps_coordinates')
    return getattr(item, 'gps_coordinates', None)


def sort_by_distance(
    items: Iterable[T],
    reference: Coordinates,
    get_gps: Callable[[T], Optional[str]] = _gps_of,
) -> List[Tuple[T, float]]:
    """
    Stable ascending sort by distance from ``reference``.

    Items without parseable coordinates sort last with distance ``inf``.
    """
    measured = []
    for item in items:
        coords = try_parse_coordinates(get_gps(item))
        distance = distance_meters(reference, coords) if coords else math.inf
        measured.append((item, distance))

    return sorted(measured, key=lambda pair: pair[1])


def filter_by_distance(
    items: Iterable[T],
    reference: Coordinates,
    max_meters: float,
    get_gps: Callable[[T], Optional[str]] = _gps_of,
) -> List[T]:
    """Keep items with parseable coordinates no further than ``max_meters``."""
    kept = []
    for item in items:
        coords = try_parse_coordinates(get_gps(item))
        if coords is None:
            continue
        if distance_meters(reference, coords) <= max_meters:
            kept.append(item)
    return kept
