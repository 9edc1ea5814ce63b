"""Runtime configuration: feed endpoints, cache TTLs and planner tuning."""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .models import Location

# MTA GTFS-Realtime feed URLs (subway only)
MTA_FEEDS = {
    "ace": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-ace",
    "bdfm": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-bdfm",
    "g": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-g",
    "jz": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-jz",
    "nqrw": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-nqrw",
    "l": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-l",
    "1234567": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs",  # 1-7, S
    "si": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-si",
}

LINE_FEEDS: Dict[str, str] = {
    "A": "ace", "C": "ace", "E": "ace",
    "B": "bdfm", "D": "bdfm", "F": "bdfm", "M": "bdfm",
    "G": "g",
    "J": "jz", "Z": "jz",
    "N": "nqrw", "Q": "nqrw", "R": "nqrw", "W": "nqrw",
    "L": "l",
    "1": "1234567", "2": "1234567", "3": "1234567", "4": "1234567",
    "5": "1234567", "6": "1234567", "7": "1234567", "S": "1234567",
    "SIR": "si",
}

# CamSys feed is primary; the nyct alerts feed has been unreliable
MTA_ALERT_FEEDS = [
    "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/camsys%2Fsubway-alerts",
    "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-alerts",
]

MTA_API_KEY = os.getenv("MTA_API_KEY", "")
FEED_TIMEOUT_SECONDS = float(os.getenv("COMMUTETRACK_FEED_TIMEOUT", "10"))

# Cache categories
GTFS = "gtfs"
ALERTS = "alerts"
HEALTH = "health"
ROUTES = "routes"
SCHEDULE = "schedule"

DEFAULT_TTLS = {
    GTFS: 10 * 60,
    ALERTS: 2 * 60,
    HEALTH: 5 * 60,
    ROUTES: 1 * 60,
    SCHEDULE: 24 * 60 * 60,
}

# Transit-time fallback bounds (minutes)
TRANSIT_FALLBACK_MARGIN_MINUTES = 5
TRANSIT_TIME_CEILING_MINUTES = 90
DEFAULT_TRANSIT_FALLBACK_MINUTES = 30

# Skip predictions that are clearly stale
STALE_PREDICTION_SECONDS = 60

# Station departure boards
DEPARTURES_PER_LINE = 5
LEAVING_NOW_SECONDS = 30
ONE_MINUTE_SECONDS = 90


@dataclass
class CacheConfig:
    """TTLs are in seconds, keyed by cache category."""
    ttls: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    refresh_threshold: float = 0.8
    response_time_history: int = 100
    failed_attempt_history: int = 50
    refresh_workers: int = 4

    def ttl_for(self, category: str) -> float:
        return self.ttls.get(category, self.ttls.get(GTFS, DEFAULT_TTLS[GTFS]))


@dataclass
class PlannerConfig:
    """Tuning knobs for route composition."""
    max_transfers: int = 2
    hubs_per_pair: int = 3
    enough_routes: int = 5
    high_confidence: int = 80
    max_routes: int = 10
    fallback_route_limit: int = 3
    walk_radius_miles: float = 0.75
    default_direction: int = 1  # northbound / inbound


@dataclass
class CommuteProfile:
    """
    The rider's fixed endpoints.

    Walking legs are measured from ``home`` to the boarding station and from
    the alighting station to ``work`` when a route is requested by station
    name.
    """
    home: Optional[Location] = field(default_factory=lambda: Location(40.688312, -73.990982))
    work: Optional[Location] = field(default_factory=lambda: Location(40.746021, -73.996736))
