"""Static schedule table: scheduled run minutes between stops on a line."""

import logging
from typing import Iterable, Optional, Tuple

import pandas as pd

from .errors import DataInconsistencyError

logger = logging.getLogger(__name__)

SCHEDULE_COLUMNS = ["line", "stop_id", "stop_sequence", "run_minutes"]


class StaticSchedule:
    """
    Per-line stop sequences with cumulative scheduled minutes.

    ``run_minutes`` is the scheduled time from the previous stop in sequence
    order, so the trip time between two stops on a line is the difference of
    their cumulative offsets.
    """

    def __init__(self, frame: pd.DataFrame):
        missing = [c for c in SCHEDULE_COLUMNS if c not in frame.columns]
        if missing:
            raise DataInconsistencyError(f"Schedule table missing columns: {missing}")

        frame = frame[SCHEDULE_COLUMNS].copy()
        frame["line"] = frame["line"].astype(str)
        frame["stop_id"] = frame["stop_id"].astype(str)
        frame["stop_sequence"] = frame["stop_sequence"].astype(int)
        frame["run_minutes"] = frame["run_minutes"].astype(float)
        frame = frame.sort_values(["line", "stop_sequence"], kind="mergesort").reset_index(drop=True)
        frame["offset"] = frame.groupby("line")["run_minutes"].cumsum()
        self.frame = frame

        logger.info(f"Loaded schedule for {frame['line'].nunique()} lines ({len(frame)} stops)")

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[str, str, int, float]]) -> "StaticSchedule":
        return cls(pd.DataFrame(list(rows), columns=SCHEDULE_COLUMNS))

    @classmethod
    def from_csv(cls, path: str) -> "StaticSchedule":
        logger.info(f"Loading schedule table from {path}")
        return cls(pd.read_csv(path, dtype={"line": str, "stop_id": str}))

    def _stops(self, line: str, stop_id: str) -> pd.DataFrame:
        f = self.frame
        return f[(f["line"] == line) & (f["stop_id"] == stop_id)]

    def transit_minutes(self, line: str, from_stop: str, to_stop: str) -> Optional[int]:
        """Scheduled minutes between two stops on ``line``, or None if either is not served."""
        origins = self._stops(line, from_stop)
        destinations = self._stops(line, to_stop)
        if origins.empty or destinations.empty:
            return None
        best = min(
            abs(dest - orig)
            for orig in origins["offset"]
            for dest in destinations["offset"]
        )
        return int(round(best))

    def direction(self, line: str, from_stop: str, to_stop: str) -> Optional[int]:
        """1 when ``to_stop`` comes later in sequence (northbound), 0 when earlier."""
        origins = self._stops(line, from_stop)
        destinations = self._stops(line, to_stop)
        if origins.empty or destinations.empty:
            return None
        start = origins["stop_sequence"].iloc[0]
        end = destinations["stop_sequence"].iloc[0]
        if start == end:
            return None
        return 1 if end > start else 0

    def longest_run(self, line: str) -> Optional[int]:
        """End-to-end scheduled minutes for ``line``."""
        offsets = self.frame.loc[self.frame["line"] == line, "offset"]
        if offsets.empty:
            return None
        return int(round(offsets.max() - offsets.min()))
