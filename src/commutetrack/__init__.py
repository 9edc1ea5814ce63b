"""CommuteTrack - Real-time NYC subway commute planner with alert correlation."""

__version__ = "0.1.0"

from .models import (
    AlertInfo,
    ArrivalPrediction,
    DataSource,
    Departure,
    Location,
    Route,
    RouteStep,
    ServiceAlert,
    Severity,
    Station,
    StepType,
    TransferHub,
)
from .errors import (
    CommuteTrackError,
    DataInconsistencyError,
    ErrorKind,
    FeedUnavailableError,
    NoConnectionError,
    Result,
    StationNotFoundError,
)
from .cache_manager import CacheManager
from .feed_gateway import FeedGateway
from .alerts import AlertCorrelator, KeywordStationSkipClassifier, StationSkipClassifier
from .geo import DistanceEstimator
from .stations import StationIndex
from .transfers import TransferTopology
from .route_composer import RouteComposer
from .planner import CommutePlanner

__all__ = [
    "CommutePlanner",
    "RouteComposer",
    "AlertCorrelator",
    "StationSkipClassifier",
    "KeywordStationSkipClassifier",
    "CacheManager",
    "FeedGateway",
    "StationIndex",
    "TransferTopology",
    "DistanceEstimator",
    "Location",
    "Station",
    "TransferHub",
    "ArrivalPrediction",
    "Departure",
    "RouteStep",
    "Route",
    "ServiceAlert",
    "AlertInfo",
    "Severity",
    "StepType",
    "DataSource",
    "ErrorKind",
    "Result",
    "CommuteTrackError",
    "StationNotFoundError",
    "FeedUnavailableError",
    "NoConnectionError",
    "DataInconsistencyError",
]
