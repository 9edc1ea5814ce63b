"""Transfer hub registry and hub-based transfer times."""

import logging
from typing import Dict, Iterable, List, Optional

from .models import TransferHub
from .static_data import MAJOR_HUBS, PRIORITY_HUB_NAMES, QUICK_TRANSFERS
from .stations import StationIndex, normalize_station_name

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_MINUTES = 3


class TransferTopology:
    """
    Registry of transfer hubs.

    Built once from the station index; read-only afterwards.
    """

    def __init__(self, hubs: Iterable[TransferHub]):
        self.hubs: Dict[str, TransferHub] = {}
        for hub in hubs:
            self.hubs[hub.name] = hub
        logger.info(f"Loaded {len(self.hubs)} transfer hubs")

    @classmethod
    def from_station_index(
        cls,
        index: StationIndex,
        priority_hub_names: Optional[List[str]] = None,
        major_hubs: Optional[List[str]] = None,
        quick_transfers: Optional[Dict[str, Dict[str, Dict[str, int]]]] = None,
    ) -> "TransferTopology":
        priority_names = PRIORITY_HUB_NAMES if priority_hub_names is None else priority_hub_names
        majors = MAJOR_HUBS if major_hubs is None else major_hubs
        quick = QUICK_TRANSFERS if quick_transfers is None else quick_transfers

        hubs = []
        used_names = set()
        # Complexes are already consolidated; one hub per logical station
        for station in sorted(index.all(), key=lambda s: s.id):
            if not _should_include_as_hub(station.name, station.lines, priority_names, majors):
                continue
            name = station.name
            if name in used_names:
                # same name, different station (e.g. the two 23rd St stops)
                name = f"{station.name} ({station.id})"
            used_names.add(name)
            is_user_priority = station.name in priority_names
            hub = TransferHub(
                name=name,
                lines=list(station.lines),
                lat=station.lat,
                lng=station.lng,
                priority=_hub_priority(station.name, station.lines, is_user_priority),
                is_user_priority=is_user_priority,
                station_id=station.id,
            )
            hub.transfer_times = _transfer_times_for_hub(hub, quick.get(station.name, {}))
            hubs.append(hub)
        return cls(hubs)

    def get_hub(self, name: str) -> Optional[TransferHub]:
        return self.hubs.get(name)

    def all_hubs(self) -> List[TransferHub]:
        return list(self.hubs.values())

    def hubs_for_line(self, line: str) -> List[TransferHub]:
        return sorted(
            (hub for hub in self.hubs.values() if line in hub.lines),
            key=lambda hub: -hub.priority,
        )

    def connecting_hubs(self, line_from: str, line_to: str) -> List[TransferHub]:
        """Hubs serving both lines: user-priority hubs first, then by weight."""
        return sorted(
            (hub for hub in self.hubs.values() if line_from in hub.lines and line_to in hub.lines),
            key=lambda hub: (not hub.is_user_priority, -hub.priority),
        )

    def transfer_time(self, hub_name: str, line_from: str, line_to: str) -> int:
        """Minutes to change from ``line_from`` to ``line_to`` at a hub."""
        hub = self.hubs.get(hub_name)
        if hub is None:
            logger.warning(f"Hub not found: {hub_name}")
            return DEFAULT_TRANSFER_MINUTES
        minutes = hub.transfer_times.get(line_from, {}).get(line_to)
        if minutes is None:
            logger.warning(f"No transfer time from {line_from} to {line_to} at {hub_name}")
            return DEFAULT_TRANSFER_MINUTES
        return minutes


def _should_include_as_hub(name: str, lines: List[str], priority_names: List[str], majors: List[str]) -> bool:
    if name in priority_names:
        return True
    normalized = normalize_station_name(name)
    if any(normalize_station_name(hub) in normalized or normalized in normalize_station_name(hub) for hub in majors):
        return len(lines) >= 2
    if len(lines) >= 3:
        return True
    if "F" in lines or "A" in lines:
        return len(lines) >= 2
    return False


def _hub_priority(name: str, lines: List[str], is_user_priority: bool) -> int:
    if is_user_priority:
        return 10
    if "Times Sq" in name or "Grand Central" in name or "Union Sq" in name:
        return 9
    if "Atlantic" in name or "Barclays" in name:
        return 8
    if len(lines) >= 6:
        return 7
    if len(lines) >= 4:
        return 6
    if len(lines) >= 3:
        return 5
    if len(lines) >= 2:
        return 4
    return 3


def _default_transfer_minutes(hub: TransferHub) -> int:
    if hub.is_user_priority:
        return 2
    if len(hub.lines) >= 6:
        return 5
    if len(hub.lines) >= 4:
        return 3
    return 2


def _transfer_times_for_hub(hub: TransferHub, quick: Dict[str, Dict[str, int]]) -> Dict[str, Dict[str, int]]:
    times: Dict[str, Dict[str, int]] = {}
    default = _default_transfer_minutes(hub)
    for line_from in hub.lines:
        times[line_from] = {}
        for line_to in hub.lines:
            if line_from == line_to:
                times[line_from][line_to] = 0
            elif line_to in quick.get(line_from, {}):
                times[line_from][line_to] = quick[line_from][line_to]
            else:
                times[line_from][line_to] = default
    return times
