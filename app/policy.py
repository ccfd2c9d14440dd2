from __future__ import annotations

import copy
from typing import Any, Dict, Mapping

from database import get_active_policy, upsert_policy
from stations import MANUAL_STATION, POSITIONAL_CAPACITY, SUB_STATIONS, canonical_station


BASELINE_POLICY: Dict[str, Any] = {
    "name": "Baseline Rotation",
    "rotation": {
        # Trailing window used for visit counts, in calendar months.
        "history_window_months": 6,
        # A manual move onto the most visited station needs confirmation at this count.
        "confirm_min_visits": 3,
    },
    "stations": {
        "positional_capacity": dict(POSITIONAL_CAPACITY),
        "manual_station": MANUAL_STATION,
        "sub_stations": dict(SUB_STATIONS),
    },
}


def build_default_policy() -> Dict[str, Any]:
    return copy.deepcopy(BASELINE_POLICY)


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a dict."""
    if conn is None:
        return build_default_policy()
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _deep_update(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def _or_default(value: Any, default: int) -> Any:
    """Fall back only when the value is missing; zero is clamped by the caller."""
    return default if value is None or value == "" else value


def _normalize_policy(policy: Dict) -> Dict:
    """Overlay stored values on the baseline so every key the planner reads is present."""
    normalized = build_default_policy()
    if not isinstance(policy, dict):
        return normalized
    _deep_update(normalized, policy)
    rotation = normalized["rotation"]
    try:
        rotation["history_window_months"] = max(1, int(_or_default(rotation.get("history_window_months"), 6)))
    except (TypeError, ValueError):
        rotation["history_window_months"] = 6
    try:
        rotation["confirm_min_visits"] = max(1, int(_or_default(rotation.get("confirm_min_visits"), 3)))
    except (TypeError, ValueError):
        rotation["confirm_min_visits"] = 3
    capacities: Dict[str, int] = {}
    for station, size in (normalized["stations"].get("positional_capacity") or {}).items():
        name = canonical_station(station)
        if not name or name == MANUAL_STATION:
            continue
        try:
            capacities[name] = max(1, int(size))
        except (TypeError, ValueError):
            continue
    normalized["stations"]["positional_capacity"] = capacities
    return normalized


def ensure_default_policy(session_factory) -> None:
    """Seed the baseline policy exactly once so the planner can run end-to-end."""

    with session_factory() as session:
        if get_active_policy(session):
            return
        spec = build_default_policy()
        name = spec.get("name", "Baseline Rotation")
        params = {key: value for key, value in spec.items() if key != "name"}
        upsert_policy(session, name, params, edited_by="system")


def history_window_months(policy: Dict) -> int:
    return int((policy.get("rotation") or {}).get("history_window_months", 6))


def confirm_min_visits(policy: Dict) -> int:
    return int((policy.get("rotation") or {}).get("confirm_min_visits", 3))


def positional_capacities(policy: Dict) -> Dict[str, int]:
    stations_cfg = policy.get("stations") or {}
    capacities = stations_cfg.get("positional_capacity")
    if not isinstance(capacities, dict):
        return dict(POSITIONAL_CAPACITY)
    return dict(capacities)
