"""Static station index: consolidation, lookup and proximity queries."""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .errors import StationNotFoundError
from .geo import haversine_miles
from .models import Location, Station

logger = logging.getLogger(__name__)

CONSOLIDATION_RADIUS_MILES = 0.1

# Street suffixes that never identify a station by themselves
GENERIC_NAME_TOKENS = {"st", "sts", "street", "av", "ave", "avenue", "sq", "blvd", "pkwy", "rd", "ctr", "the"}
MIN_TOKEN_LENGTH = 3


def normalize_station_name(name: str) -> str:
    """Normalize name variations ("Jay St - MetroTech" == "jay st-metrotech")."""
    name = re.sub(r"\s*-\s*", "-", name.strip().lower())
    return re.sub(r"\s+", " ", name)


def _name_tokens(name: str) -> List[str]:
    return re.findall(r"[a-z0-9]+", name.lower())


def _record_to_station(record: dict) -> Station:
    lines = sorted(set(record["lines"]))
    feed_ids = {line: record["id"] for line in lines}
    feed_ids.update(record.get("feed_ids") or {})
    return Station(
        id=record["id"],
        name=record["name"],
        lines=lines,
        lat=float(record["lat"]),
        lng=float(record["lng"]),
        feed_ids=feed_ids,
        parent_id=record.get("parent_id") or None,
    )


def consolidate(stations: Iterable[Station], radius_miles: float = CONSOLIDATION_RADIUS_MILES) -> List[Station]:
    """
    Merge physical stop records into logical stations.

    Two records merge when they share a parent key, or share a normalized name
    and lie within ``radius_miles`` of each other (transitively). The merged
    station takes the smallest member id and that member's coordinates; feed
    ids are merged in id order with the first writer winning. Running the
    result through ``consolidate`` again returns it unchanged.
    """
    members = sorted(stations, key=lambda s: s.id)
    parent = list(range(len(members)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    def union(i: int, j: int) -> None:
        root_i, root_j = find(i), find(j)
        if root_i != root_j:
            parent[max(root_i, root_j)] = min(root_i, root_j)

    names = [normalize_station_name(s.name) for s in members]
    for i in range(len(members)):
        for j in range(i + 1, len(members)):
            a, b = members[i], members[j]
            if a.parent_id and a.parent_id == b.parent_id:
                union(i, j)
            elif names[i] == names[j] and haversine_miles(a.location, b.location) <= radius_miles:
                union(i, j)

    groups: Dict[int, List[Station]] = {}
    for i, station in enumerate(members):
        groups.setdefault(find(i), []).append(station)

    result = []
    for root in sorted(groups):
        group = groups[root]
        anchor = group[0]
        lines = set()
        feed_ids: Dict[str, str] = {}
        for station in group:
            lines.update(station.lines)
            for line, stop_id in station.feed_ids.items():
                feed_ids.setdefault(line, stop_id)
        result.append(
            Station(
                id=anchor.id,
                name=anchor.name,
                lines=sorted(lines),
                lat=anchor.lat,
                lng=anchor.lng,
                feed_ids=feed_ids,
                parent_id=next((s.parent_id for s in group if s.parent_id), None),
            )
        )
        if len(group) > 1:
            logger.debug(f"Consolidated {[s.id for s in group]} into {anchor.id} ({anchor.name})")
    return result


class StationIndex:
    """Read-only index of logical stations, built once at startup."""

    def __init__(self, stations: Iterable[Station], radius_miles: float = CONSOLIDATION_RADIUS_MILES):
        self.stations: Dict[str, Station] = {}
        self.stations_by_name: Dict[str, List[str]] = {}  # normalized name -> [station ids]
        self.stops_by_line: Dict[str, List[str]] = {}  # line -> [station ids]
        self._alias: Dict[str, str] = {}  # any member/feed stop id -> station id

        for station in consolidate(stations, radius_miles):
            self.stations[station.id] = station
            self.stations_by_name.setdefault(normalize_station_name(station.name), []).append(station.id)
            for line in station.lines:
                self.stops_by_line.setdefault(line, []).append(station.id)
            self._alias[station.id] = station.id
            for stop_id in station.feed_ids.values():
                self._alias.setdefault(stop_id, station.id)

        logger.info(f"Indexed {len(self.stations)} stations on {len(self.stops_by_line)} lines")

    @classmethod
    def from_records(cls, records: Iterable[dict], radius_miles: float = CONSOLIDATION_RADIUS_MILES) -> "StationIndex":
        """Build from dicts of {id, name, lines, lat, lng, feed_ids?, parent_id?}."""
        stations = []
        for record in records:
            try:
                stations.append(_record_to_station(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed station record {record!r}: {e}")
        return cls(stations, radius_miles)

    @classmethod
    def from_csv(cls, path: str, radius_miles: float = CONSOLIDATION_RADIUS_MILES) -> "StationIndex":
        """
        Load a station table CSV.

        Columns: id, name, lines (space separated), lat, lng, and optionally
        parent_id and feed_ids ("F:F25 A:A41").
        """
        logger.info(f"Loading station table from {path}")
        frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        records = []
        for row in frame.to_dict(orient="records"):
            feed_ids = {}
            for pair in row.get("feed_ids", "").split():
                line, _, stop_id = pair.partition(":")
                if line and stop_id:
                    feed_ids[line] = stop_id
            records.append(
                {
                    "id": row.get("id"),
                    "name": row.get("name"),
                    "lines": row.get("lines", "").split(),
                    "lat": row.get("lat"),
                    "lng": row.get("lng"),
                    "parent_id": row.get("parent_id"),
                    "feed_ids": feed_ids,
                }
            )
        return cls.from_records(records, radius_miles)

    def get(self, station_id: str) -> Optional[Station]:
        """Station by id or by any GTFS stop id it absorbed (with or without N/S)."""
        key = self._alias.get(station_id)
        if key is None and station_id[-1:] in ("N", "S"):
            key = self._alias.get(station_id[:-1])
        return self.stations.get(key) if key else None

    def get_station(self, station_id: str) -> Station:
        station = self.get(station_id)
        if station is None:
            raise StationNotFoundError(f"Station {station_id} not found")
        return station

    def all(self) -> List[Station]:
        return list(self.stations.values())

    def names(self) -> List[str]:
        return sorted({station.name for station in self.stations.values()})

    def find_by_name(self, name: str) -> List[Station]:
        """
        Find stations by name.

        Exact (normalized) matches come first, followed by complex variants
        such as "23rd St-8th Ave" for "23rd St". Falls back to stations whose
        names contain every word of the query, when at least one of those
        words is distinctive.
        """
        query = normalize_station_name(name)
        if not query:
            return []

        results = [self.stations[i] for i in self.stations_by_name.get(query, [])]
        for station_name, ids in self.stations_by_name.items():
            if station_name.startswith(query + "-"):
                results.extend(self.stations[i] for i in ids)
        if results:
            return results

        # Partial names must be whole words, and "St" or "a" alone match nothing
        tokens = set(_name_tokens(query))
        if not any(len(token) >= MIN_TOKEN_LENGTH and token not in GENERIC_NAME_TOKENS for token in tokens):
            return []
        for station_name, ids in self.stations_by_name.items():
            if tokens <= set(_name_tokens(station_name)):
                results.extend(self.stations[i] for i in ids)
        return results

    def stations_for_line(self, line: str) -> List[Station]:
        return [self.stations[i] for i in self.stops_by_line.get(line, [])]

    def nearest(self, location: Location) -> Optional[Tuple[Station, float]]:
        """Closest station and its distance in miles, or None if the index is empty."""
        best = None
        for station in self.stations.values():
            distance = haversine_miles(location, station.location)
            if best is None or distance < best[1]:
                best = (station, distance)
        return best

    def within_radius(self, location: Location, radius_miles: float) -> List[Tuple[Station, float]]:
        found = []
        for station in self.stations.values():
            distance = haversine_miles(location, station.location)
            if distance <= radius_miles:
                found.append((station, distance))
        found.sort(key=lambda pair: (pair[1], pair[0].id))
        return found

    def nearest_for_line(self, location: Location, line: str, limit: int = 3) -> List[Tuple[Station, float]]:
        ranked = sorted(
            ((station, haversine_miles(location, station.location)) for station in self.stations_for_line(line)),
            key=lambda pair: (pair[1], pair[0].id),
        )
        return ranked[:limit]

    def related_stop_ids(self, station: Station, lines: Optional[Iterable[str]] = None) -> List[str]:
        """Station id plus every feed stop id for ``lines`` with N/S platform suffixes."""
        wanted = station.lines if lines is None else [line for line in lines if line in station.feed_ids]
        ids = {station.id}
        for line in wanted:
            base = station.gtfs_stop_id(line)
            ids.update((base, base + "N", base + "S"))
        return sorted(ids)
