from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional


STATIONS: List[str] = [
    "Plock",
    "Auto Plock",
    "Pack",
    "Auto Pack",
    "KM",
    "Decating",
    "Rework",
    "In/Ut",
    "Rep",
    "FL",
]

# Filled by free-text entry only, never by the generator.
MANUAL_STATION = "FL"
MANUAL_STATION_CAPACITY = 1

UNASSIGNED = "unassigned"
EMPTY_SLOT = ""

# Sub-stations render under a parent card but keep their own needs and assignments.
SUB_STATIONS: Dict[str, str] = {
    "Rework": "Decating",
}

POSITIONAL_CAPACITY: Dict[str, int] = {
    "Pack": 12,
    "Auto Plock": 6,
    "Auto Pack": 6,
}

_STATION_INDEX = {name.lower(): idx for idx, name in enumerate(STATIONS)}


def normalize_station(station: str) -> str:
    return (station or "").strip().lower()


def canonical_station(station: str) -> Optional[str]:
    """Return the catalog spelling for a station label, or None when unknown."""
    idx = _STATION_INDEX.get(normalize_station(station))
    if idx is None:
        return None
    return STATIONS[idx]


def is_known_station(station: str) -> bool:
    return canonical_station(station) is not None


def station_order(station: str) -> int:
    return _STATION_INDEX.get(normalize_station(station), len(STATIONS))


def is_manual_station(station: str) -> bool:
    return canonical_station(station) == MANUAL_STATION


def schedulable_stations() -> List[str]:
    """Catalog order minus the manual-only station."""
    return [station for station in STATIONS if station != MANUAL_STATION]


def is_positional(station: str, capacities: Optional[Mapping[str, int]] = None) -> bool:
    name = canonical_station(station)
    if name is None:
        return False
    return name in (capacities if capacities is not None else POSITIONAL_CAPACITY)


def positional_capacity(station: str, capacities: Optional[Mapping[str, int]] = None) -> int:
    mapping = capacities if capacities is not None else POSITIONAL_CAPACITY
    name = canonical_station(station)
    if name is None or name not in mapping:
        return 0
    return int(mapping[name])


def parent_station(station: str) -> Optional[str]:
    return SUB_STATIONS.get(canonical_station(station) or "")


def sub_stations_of(station: str) -> List[str]:
    name = canonical_station(station)
    return [child for child, parent in SUB_STATIONS.items() if parent == name]


def sort_stations(stations: Iterable[str]) -> List[str]:
    return sorted(set(stations), key=station_order)
