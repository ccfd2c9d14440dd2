from __future__ import annotations

import calendar
import datetime
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from repository import PlanningRepository

DEFAULT_WINDOW_MONTHS = 6
RECENT_LIMIT = 5


def months_before(day: datetime.date, months: int) -> datetime.date:
    """Same calendar day ``months`` earlier, clamped to the end of shorter months."""
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day.day, last_day))


def can_assign_to_station(
    employee_id: str,
    station: str,
    last_stations: Mapping[str, Optional[str]],
) -> bool:
    """False only when the employee's most recent station is exactly ``station``."""
    last_station = last_stations.get(employee_id)
    if not last_station:
        return True
    return last_station != station


def available_stations_for_employee(
    employee_id: str,
    stations: Iterable[str],
    last_stations: Mapping[str, Optional[str]],
) -> List[str]:
    return [station for station in stations if can_assign_to_station(employee_id, station, last_stations)]


def least_visited_stations(counts: Mapping[str, int]) -> List[str]:
    if not counts:
        return []
    minimum = min(counts.values())
    return [station for station, count in counts.items() if count == minimum]


def least_visited_station(counts: Mapping[str, int]) -> Optional[str]:
    tied = least_visited_stations(counts)
    return tied[0] if tied else None


def most_visited_station(counts: Mapping[str, int]) -> Tuple[Optional[str], int]:
    """Station with the strictly highest count; the first one seen wins ties.

    Returns ``(None, 0)`` when nothing has been visited.
    """
    best_station: Optional[str] = None
    best_count = 0
    for station, count in counts.items():
        if count > best_count:
            best_station, best_count = station, count
    return best_station, best_count


class RotationHistoryTracker:
    """Last-station and trailing-window visit counts read from the work history."""

    def __init__(
        self,
        repository: PlanningRepository,
        *,
        today: Optional[datetime.date] = None,
        window_months: int = DEFAULT_WINDOW_MONTHS,
    ) -> None:
        self.repository = repository
        self.today = today
        self.window_months = max(1, int(window_months))

    def reference_date(self) -> datetime.date:
        return self.today or datetime.date.today()

    def window_start(self) -> datetime.date:
        return months_before(self.reference_date(), self.window_months)

    def last_station(self, employee_id: str) -> Optional[str]:
        return self.last_stations([employee_id]).get(employee_id)

    def last_stations(self, employee_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        ids = list(dict.fromkeys(employee_ids))
        fetched = self.repository.load_last_stations(ids)
        return {employee_id: fetched.get(employee_id) for employee_id in ids}

    def visit_counts(self, employee_id: str) -> Dict[str, int]:
        return self.visit_counts_for([employee_id])[employee_id]

    def recent_records(self, employee_id: str, limit: int = RECENT_LIMIT) -> List[Tuple[str, datetime.date]]:
        """Newest ``(station, date)`` pairs for one employee, across all time."""
        rows = self.repository.load_work_history([employee_id])
        ordered = sorted(rows, key=lambda row: row[2], reverse=True)
        return [(station, work_date) for _employee_id, station, work_date in ordered[: max(0, limit)]]

    def history_summary(self, employee_id: str, limit: int = RECENT_LIMIT) -> Dict[str, object]:
        counts = self.visit_counts(employee_id)
        most_visited, most_count = most_visited_station(counts)
        return {
            "employee_id": employee_id,
            "window_start": self.window_start(),
            "window_months": self.window_months,
            "visit_counts": counts,
            "most_visited": most_visited,
            "most_visited_count": most_count,
            "recent": [
                {"station": station, "work_date": work_date}
                for station, work_date in self.recent_records(employee_id, limit)
            ],
        }

    def visit_counts_for(self, employee_ids: Iterable[str]) -> Dict[str, Dict[str, int]]:
        ids = list(dict.fromkeys(employee_ids))
        counts: Dict[str, Dict[str, int]] = {employee_id: defaultdict(int) for employee_id in ids}
        if not ids:
            return {}
        for employee_id, station, _work_date in self.repository.load_work_history(ids, self.window_start()):
            if employee_id in counts:
                counts[employee_id][station] += 1
        return {employee_id: dict(station_counts) for employee_id, station_counts in counts.items()}
