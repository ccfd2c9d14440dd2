from __future__ import annotations

import copy
import datetime
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from repository import PlanningRepository
from stations import EMPTY_SLOT, MANUAL_STATION, sort_stations
from validation import collect_assignment_rows

if TYPE_CHECKING:
    from generator.engine import DistributionResult

_logger = logging.getLogger(__name__)


@dataclass
class DayPlan:
    """One day's editable station lists. Positional stations keep ``""`` gaps."""

    day: datetime.date
    selected: List[str] = field(default_factory=list)
    assignments: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_distribution(
        cls,
        day: datetime.date,
        selected: Iterable[str],
        result: "DistributionResult",
    ) -> "DayPlan":
        return cls(
            day=day,
            selected=list(dict.fromkeys(selected)),
            assignments={station: list(ids) for station, ids in result.assignments.items()},
        )

    @property
    def manual_value(self) -> str:
        values = self.assignments.get(MANUAL_STATION) or []
        return values[0] if values else ""

    def copy(self) -> "DayPlan":
        return DayPlan(day=self.day, selected=list(self.selected), assignments=copy.deepcopy(self.assignments))

    def station_of(self, employee_id: str) -> Optional[str]:
        for station, employee_ids in self.assignments.items():
            if station != MANUAL_STATION and employee_id in employee_ids:
                return station
        return None

    def assigned_ids(self) -> List[str]:
        seen: List[str] = []
        for station, employee_ids in self.assignments.items():
            if station == MANUAL_STATION:
                continue
            seen.extend(employee_id for employee_id in employee_ids if employee_id != EMPTY_SLOT)
        return seen

    def unassigned(self) -> List[str]:
        placed = set(self.assigned_ids())
        return [employee_id for employee_id in self.selected if employee_id not in placed]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "selected": list(self.selected),
            "assignments": {
                station: list(self.assignments[station]) for station in sort_stations(self.assignments)
            },
            "manual_value": self.manual_value,
            "unassigned": self.unassigned(),
        }


def commit_day_plan(repository: PlanningRepository, plan: DayPlan, actor: str = "system") -> Dict[str, Any]:
    """Replace the stored assignments and work history for ``plan.day``.

    Malformed employee ids are skipped with a warning. When nothing valid is
    left the store is not touched. Each step commits on its own, so a failure
    part way leaves the day partially written and raises ``PersistenceError``.
    """
    rows, warnings = collect_assignment_rows(plan.assignments, plan.day)
    summary: Dict[str, Any] = {
        "day": plan.day.isoformat(),
        "saved": 0,
        "history": 0,
        "skipped": len(warnings),
        "warnings": list(warnings),
    }
    if not rows:
        message = "No valid assignments to save."
        _logger.warning("%s (%s)", message, plan.day)
        summary["warnings"].append(message)
        return summary

    repository.delete_day_history(plan.day)
    removed, summary["saved"] = repository.replace_day_assignments(plan.day, rows)
    summary["history"] = repository.append_work_history(
        [
            {"employee_id": row["employee_id"], "station": row["station"], "work_date": plan.day}
            for row in rows
        ]
    )
    summary["replaced"] = removed
    repository.record_audit(actor or "system", "save", plan.day, {"saved": summary["saved"], "skipped": summary["skipped"]})
    _logger.info("Saved %d assignments for %s (%d skipped)", summary["saved"], plan.day, summary["skipped"])
    return summary


def load_day_plan(
    repository: PlanningRepository,
    day: datetime.date,
    selected: Optional[Iterable[str]] = None,
) -> DayPlan:
    """Rebuild a plan from stored assignments, ordered by slot index."""
    assignments = repository.load_day_assignments(day)
    if selected is None:
        roster: List[str] = []
        for station in sort_stations(assignments):
            roster.extend(employee_id for employee_id in assignments[station] if employee_id != EMPTY_SLOT)
        selected = roster
    return DayPlan(day=day, selected=list(dict.fromkeys(selected)), assignments=assignments)
