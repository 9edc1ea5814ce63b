"""Data models for the commute planner."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Location:
    """A WGS84 point."""
    lat: float
    lng: float


@dataclass
class Station:
    """Represents a logical subway station (one or more platforms)."""
    id: str
    name: str
    lines: List[str]  # Route IDs served at this station
    lat: float
    lng: float
    feed_ids: Dict[str, str] = field(default_factory=dict)  # line -> GTFS stop id
    parent_id: Optional[str] = None

    @property
    def location(self) -> Location:
        return Location(self.lat, self.lng)

    def gtfs_stop_id(self, line: str) -> str:
        """GTFS stop id used by the realtime feed for ``line`` at this station."""
        return self.feed_ids.get(line, self.id)


@dataclass
class TransferHub:
    """A station where riders can change between lines."""
    name: str
    lines: List[str]
    lat: float
    lng: float
    priority: int  # 1-10, higher = more important
    is_user_priority: bool = False
    transfer_times: Dict[str, Dict[str, int]] = field(default_factory=dict)
    station_id: Optional[str] = None

    @property
    def id(self) -> str:
        return "hub_" + "".join(c if c.isalnum() else "_" for c in self.name)


@dataclass(frozen=True)
class ArrivalPrediction:
    """Represents one predicted stop event from the realtime feed."""
    stop_id: str
    stop_sequence: int
    arrival_time: int  # Unix timestamp
    departure_time: int  # Unix timestamp
    route_id: Optional[str] = None
    trip_id: Optional[str] = None
    direction_id: Optional[int] = None


@dataclass
class Departure:
    """Represents a train about to leave a station."""
    line: str
    departure_time: datetime
    minutes_away: int  # Whole minutes until departure, 0 when leaving now
    relative_time: str  # "Now", "1", "7"...
    direction_label: str  # e.g. "Manhattan-bound"
    trip_id: Optional[str] = None


class StepType(str, Enum):
    WALK = "walk"
    WAIT = "wait"
    TRANSIT = "transit"
    TRANSFER = "transfer"
    ARRIVE = "arrive"


class DataSource(str, Enum):
    REALTIME = "realtime"
    ESTIMATED = "estimated"
    FIXED = "fixed"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, severities) -> Optional["Severity"]:
        """Return the most severe value, or None for an empty iterable."""
        result = None
        for severity in severities:
            if result is None or severity.rank > result.rank:
                result = severity
        return result


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.SEVERE: 2}


@dataclass
class RouteStep:
    """One leg or pause of an itinerary."""
    type: StepType
    duration: int  # minutes
    data_source: DataSource
    description: str = ""
    line: Optional[str] = None
    from_station: Optional[str] = None
    to_station: Optional[str] = None
    from_station_id: Optional[str] = None
    to_station_id: Optional[str] = None


@dataclass(frozen=True)
class InformedEntity:
    """Who an alert applies to; any field may be unset."""
    route_id: Optional[str] = None
    stop_id: Optional[str] = None
    direction_id: Optional[int] = None


@dataclass(frozen=True)
class ActivePeriod:
    """Alert validity window as Unix timestamps; None means open-ended."""
    start: Optional[int] = None
    end: Optional[int] = None

    def contains(self, now: float) -> bool:
        if self.start is not None and now < self.start:
            return False
        if self.end is not None and now > self.end:
            return False
        return True


@dataclass
class ServiceAlert:
    """Represents a service alert."""
    id: str
    header_text: str
    description_text: str
    affected_routes: List[str]
    severity: Severity = Severity.INFO
    informed_entities: List[InformedEntity] = field(default_factory=list)
    active_periods: List[ActivePeriod] = field(default_factory=list)

    @property
    def active_period(self) -> Optional[ActivePeriod]:
        return self.active_periods[0] if self.active_periods else None

    @property
    def text(self) -> str:
        return f"{self.header_text} {self.description_text}".strip()

    def is_active(self, now: float) -> bool:
        if not self.active_periods:
            return True
        return any(period.contains(now) for period in self.active_periods)


@dataclass
class Route:
    """A complete itinerary from origin to destination."""
    id: int
    arrival_time: datetime
    total_time_minutes: int
    steps: List[RouteStep]
    confidence: int  # 0-100, higher = more reliable
    is_real_time_data: bool = True
    alerts: List[ServiceAlert] = field(default_factory=list)
    alert_severity: Optional[Severity] = None
    warning: Optional[str] = None
    arrives_by_target: Optional[bool] = None

    @property
    def transfer_count(self) -> int:
        return sum(1 for step in self.steps if step.type == StepType.TRANSFER)

    @property
    def is_direct(self) -> bool:
        return self.transfer_count == 0

    @property
    def lines(self) -> List[str]:
        return [step.line for step in self.steps if step.type == StepType.TRANSIT and step.line]

    @property
    def starting_station(self) -> Optional[str]:
        for step in self.steps:
            if step.type == StepType.TRANSIT:
                return step.from_station
        return None

    @property
    def ending_station(self) -> Optional[str]:
        for step in reversed(self.steps):
            if step.type == StepType.TRANSIT:
                return step.to_station
        return None


@dataclass
class AlertInfo:
    """Result of correlating alerts against a route."""
    has_alerts: bool
    severity: Optional[Severity]
    alerts: List[ServiceAlert]
