"""Distance and walking-time estimates for NYC streets."""

import logging
import math
from typing import Optional

from .errors import ErrorKind, Result
from .models import Location

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959

# Brooklyn brownstone blocks walk faster than midtown sidewalks
BOROUGH_WALKING_SPEED_MPH = {
    "Brooklyn": 3.75,
    "Manhattan": 3.0,
    "Queens": 3.0,
    "Bronx": 3.0,
    "Staten Island": 3.0,
}
DEFAULT_WALKING_SPEED_MPH = 3.0
WALKING_BUFFER_MINUTES = 1  # intersections, stairs, fare control

# Manhattan's east shoreline as (lat, lon) points, south to north
_MANHATTAN_EAST_EDGE = [
    (40.700, -73.975),
    (40.750, -73.958),
    (40.800, -73.928),
    (40.880, -73.910),
]


def haversine_miles(a: Location, b: Location) -> float:
    """Great-circle distance between two points in miles."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def walking_time_minutes(distance_miles: float, speed_mph: float = DEFAULT_WALKING_SPEED_MPH, add_buffer: bool = True) -> int:
    """``round(distance / speed * 60)`` plus the fixed buffer."""
    minutes = round_half_up(distance_miles / speed_mph * 60)
    if add_buffer:
        minutes += WALKING_BUFFER_MINUTES
    return minutes


def _manhattan_east_edge(lat: float) -> float:
    points = _MANHATTAN_EAST_EDGE
    if lat <= points[0][0]:
        return points[0][1]
    for (lat_a, lon_a), (lat_b, lon_b) in zip(points, points[1:]):
        if lat <= lat_b:
            return lon_a + (lon_b - lon_a) * (lat - lat_a) / (lat_b - lat_a)
    return points[-1][1]


def get_borough(lat: float, lon: float) -> Optional[str]:
    """
    Roughly infer NYC borough from lat/lon.
    Not perfect, but good enough for walking speeds and direction labels.
    """
    # Staten Island
    if 40.48 <= lat <= 40.65 and -74.25 <= lon <= -74.05:
        return "Staten Island"
    # Manhattan: bounded east by the East/Harlem rivers
    if 40.70 <= lat <= 40.88 and -74.02 <= lon <= _manhattan_east_edge(lat):
        return "Manhattan"
    # Bronx
    if 40.79 <= lat <= 40.92 and -73.94 <= lon <= -73.77:
        return "Bronx"
    # Brooklyn
    if 40.56 <= lat <= 40.74 and -74.05 <= lon <= -73.85:
        return "Brooklyn"
    # Queens
    if 40.54 <= lat <= 40.81 and -73.96 <= lon <= -73.70:
        return "Queens"
    return None


def get_direction_label(route_id: str, direction_id: int, borough: Optional[str] = None) -> str:
    """
    Get human-readable direction label based on route and direction_id.
    Adds borough-aware labels (e.g., Manhattan-bound/Brooklyn-bound) when possible.
    """
    if borough:
        b = borough.lower()
        if b == "brooklyn":
            return "Manhattan-bound" if direction_id == 1 else "Brooklyn-bound"
        if b == "queens":
            return "Manhattan-bound" if direction_id == 1 else "Queens-bound"
        if b == "bronx":
            return "Bronx-bound" if direction_id == 1 else "Manhattan-bound"
        if b == "staten island":
            return "St. George-bound" if direction_id == 1 else "Tottenville-bound"

    if route_id in ["1", "2", "3", "4", "5", "6", "7", "A", "C", "E"]:
        return "Uptown" if direction_id == 1 else "Downtown"
    if route_id in ["B", "D", "F", "M"]:
        return "North" if direction_id == 1 else "South"
    if route_id in ["G", "L", "N", "Q", "R", "W"]:
        return "Westbound" if direction_id == 1 else "Eastbound"
    if route_id in ["J", "Z"]:
        return "Broad Street" if direction_id == 1 else "Jamaica"
    return f"Direction {direction_id}"


class DistanceEstimator:
    """Borough-aware walking-time estimates between points."""

    def __init__(self, speeds_mph=None, default_speed_mph: float = DEFAULT_WALKING_SPEED_MPH):
        self.speeds_mph = dict(BOROUGH_WALKING_SPEED_MPH if speeds_mph is None else speeds_mph)
        self.default_speed_mph = default_speed_mph

    def distance(self, a: Location, b: Location) -> float:
        return haversine_miles(a, b)

    def speed_for(self, point: Location) -> float:
        borough = get_borough(point.lat, point.lng)
        return self.speeds_mph.get(borough, self.default_speed_mph)

    def walking_time(self, origin: Location, destination: Location) -> int:
        """Walking minutes, using the speed of the borough the walk starts in."""
        return walking_time_minutes(self.distance(origin, destination), self.speed_for(origin))

    def walking_time_to_line(self, origin: Location, line: str, station_index) -> Result:
        """
        Walking minutes from ``origin`` to the closest station on ``line``.

        Returns a ``NOT_FOUND`` result when no station serves the line.
        """
        candidates = station_index.nearest_for_line(origin, line, limit=1)
        if not candidates:
            logger.debug(f"No stations found for line {line}")
            return Result.failure(ErrorKind.NOT_FOUND, f"No stations found for line {line}")
        station, _ = candidates[0]
        return Result.success(self.walking_time(origin, station.location))
