from __future__ import annotations

import datetime
import logging
import re
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from errors import ValidationError
from stations import EMPTY_SLOT, MANUAL_STATION, canonical_station, positional_capacity, station_order

_logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_employee_id(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.match(value.strip()))


def validate_employee_id(value: Any, station: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Empty employee id at station {station}.")
    trimmed = value.strip()
    if not UUID_PATTERN.match(trimmed):
        raise ValidationError(f'Invalid employee id "{trimmed}" at station {station}.')
    return trimmed


def collect_assignment_rows(
    assignments: Mapping[str, List[str]],
    day: datetime.date,
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Flatten a day's station lists into storable rows.

    The manual-only station and empty slots are left out. Malformed ids are
    skipped with a warning so the rest of the batch can still be saved.
    """
    rows: List[Dict[str, Any]] = []
    warnings: List[str] = []
    for station, employee_ids in assignments.items():
        if station == MANUAL_STATION or not employee_ids:
            continue
        for index, employee_id in enumerate(employee_ids):
            if employee_id == EMPTY_SLOT or employee_id is None:
                continue
            try:
                trimmed = validate_employee_id(employee_id, station)
            except ValidationError as exc:
                _logger.warning("Skipping assignment: %s", exc)
                warnings.append(str(exc))
                continue
            rows.append(
                {
                    "employee_id": trimmed,
                    "station": station,
                    "position_index": index,
                    "assigned_date": day,
                }
            )
    return rows, warnings


def validate_day_plan(
    assignments: Mapping[str, List[str]],
    *,
    needs: Optional[Mapping[str, int]] = None,
    competencies: Optional[Mapping[str, Set[str]]] = None,
    capacities: Optional[Mapping[str, int]] = None,
) -> Dict[str, Any]:
    """Return validation findings for an in-progress day plan."""
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_unknown_station_issues(assignments))
    issues.extend(_double_booking_issues(assignments))
    issues.extend(_capacity_issues(assignments, capacities))
    if needs is not None:
        warnings.extend(_staffing_warnings(assignments, needs))
    if competencies is not None:
        warnings.extend(_competency_warnings(assignments, competencies))
    return {"issues": issues, "warnings": warnings, "valid": not issues}


def _occupants(employee_ids: List[str]) -> List[str]:
    return [employee_id for employee_id in employee_ids or [] if employee_id]


def _unknown_station_issues(assignments: Mapping[str, List[str]]) -> List[Dict[str, Any]]:
    issues = []
    for station in assignments:
        if canonical_station(station) is None:
            issues.append({"type": "unknown_station", "station": station, "message": f"Unknown station {station}."})
    return issues


def _double_booking_issues(assignments: Mapping[str, List[str]]) -> List[Dict[str, Any]]:
    counts: Counter = Counter()
    locations: Dict[str, List[str]] = {}
    for station, employee_ids in assignments.items():
        if station == MANUAL_STATION:
            continue
        for employee_id in _occupants(employee_ids):
            counts[employee_id] += 1
            locations.setdefault(employee_id, []).append(station)
    issues = []
    for employee_id, count in counts.items():
        if count > 1:
            stations = sorted(locations[employee_id], key=station_order)
            issues.append(
                {
                    "type": "double_booking",
                    "employee_id": employee_id,
                    "stations": stations,
                    "message": f"Employee {employee_id} is placed {count} times ({', '.join(stations)}).",
                }
            )
    return issues


def _capacity_issues(
    assignments: Mapping[str, List[str]],
    capacities: Optional[Mapping[str, int]],
) -> List[Dict[str, Any]]:
    issues = []
    for station, employee_ids in assignments.items():
        if station == MANUAL_STATION:
            if len(_occupants(employee_ids)) > 1:
                issues.append(
                    {"type": "capacity", "station": station, "message": f"{station} holds a single name."}
                )
            continue
        limit = positional_capacity(station, capacities)
        if limit and len(employee_ids or []) > limit:
            issues.append(
                {
                    "type": "capacity",
                    "station": station,
                    "message": f"{station} has {len(employee_ids)} slots; the grid holds {limit}.",
                }
            )
    return issues


def _staffing_warnings(assignments: Mapping[str, List[str]], needs: Mapping[str, int]) -> List[Dict[str, Any]]:
    warnings = []
    for station, needed in sorted(needs.items(), key=lambda item: station_order(item[0])):
        if station == MANUAL_STATION:
            continue
        filled = len(_occupants(assignments.get(station, [])))
        if filled < needed:
            warnings.append(
                {
                    "type": "understaffed",
                    "station": station,
                    "message": f"{station} has {filled} of {needed} needed.",
                }
            )
        elif filled > needed:
            warnings.append(
                {
                    "type": "overstaffed",
                    "station": station,
                    "message": f"{station} has {filled} placed but needs {needed}.",
                }
            )
    return warnings


def _competency_warnings(
    assignments: Mapping[str, List[str]],
    competencies: Mapping[str, Set[str]],
) -> List[Dict[str, Any]]:
    warnings = []
    for station, employee_ids in assignments.items():
        if station == MANUAL_STATION:
            continue
        for employee_id in _occupants(employee_ids):
            if employee_id in competencies and station not in competencies[employee_id]:
                warnings.append(
                    {
                        "type": "competency",
                        "station": station,
                        "employee_id": employee_id,
                        "message": f"Employee {employee_id} is not qualified for {station}.",
                    }
                )
    return warnings
