"""Error taxonomy shared by the planner components."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FEED_UNAVAILABLE = "feed_unavailable"
    NO_CONNECTION = "no_connection"
    DATA_INCONSISTENCY = "data_inconsistency"


class CommuteTrackError(Exception):
    """Base class for planner errors."""

    kind = ErrorKind.DATA_INCONSISTENCY

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class StationNotFoundError(CommuteTrackError):
    kind = ErrorKind.NOT_FOUND


class FeedUnavailableError(CommuteTrackError):
    """Upstream feed could not be fetched or decoded."""

    kind = ErrorKind.FEED_UNAVAILABLE


class NoConnectionError(CommuteTrackError):
    kind = ErrorKind.NO_CONNECTION


class DataInconsistencyError(CommuteTrackError):
    kind = ErrorKind.DATA_INCONSISTENCY


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a lookup that fails soft.

    ``value`` is always usable when ``ok``; on failure it may still carry a
    fallback (e.g. an estimated transit time) and ``error`` says why.
    """
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "", fallback: Optional[T] = None) -> "Result[T]":
        return cls(value=fallback, error=error, message=message)
