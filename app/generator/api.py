from __future__ import annotations

import datetime
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .engine import AssignmentEngine, CandidateProfile, DistributionResult
from competency import CompetencyRegistry
from day_plan import DayPlan
from needs import NeedsSpecification
from policy import history_window_months
from repository import PlanningRepository
from rotation import RotationHistoryTracker

_logger = logging.getLogger(__name__)


def build_profiles(
    registry: CompetencyRegistry,
    tracker: RotationHistoryTracker,
    employee_ids: Iterable[str],
) -> Dict[str, CandidateProfile]:
    """Snapshot competencies, last stations and visit counts for the roster."""
    ids = list(dict.fromkeys(employee_ids))
    competencies = registry.load(ids)
    last_stations = tracker.last_stations(ids)
    visits = tracker.visit_counts_for(ids)
    return {
        employee_id: CandidateProfile(
            employee_id=employee_id,
            competencies=competencies.get(employee_id, frozenset()),
            last_station=last_stations.get(employee_id),
            visit_counts=visits.get(employee_id, {}),
        )
        for employee_id in ids
    }


def distribute_for_day(
    repository: PlanningRepository,
    day: datetime.date,
    selected_employee_ids: Iterable[str],
    manual_station_value: Optional[str] = None,
    *,
    today: Optional[datetime.date] = None,
    actor: str = "system",
    policy: Optional[Dict] = None,
) -> Tuple[Dict, DayPlan]:
    if day is None:
        raise ValueError("day is required.")
    selected = list(dict.fromkeys(employee_id for employee_id in selected_employee_ids if employee_id))
    policy = policy if policy is not None else repository.load_policy()
    tracker = RotationHistoryTracker(
        repository,
        today=today,
        window_months=history_window_months(policy),
    )
    registry = CompetencyRegistry(repository)
    profiles = build_profiles(registry, tracker, selected)
    needs = NeedsSpecification.for_day(repository, day)

    result = AssignmentEngine(profiles).distribute(selected, needs, manual_station_value)
    plan = DayPlan.from_distribution(day, selected, result)
    summary = _summarize(day, selected, needs, result)
    repository.record_audit(
        actor or "system",
        "distribute",
        day,
        {
            "selected": len(selected),
            "assigned": result.assigned_count,
            "unassigned": result.unassigned_count,
        },
    )
    if result.unassigned_count:
        _logger.warning("%d employees left without a station on %s", result.unassigned_count, day)
    return summary, plan


def _summarize(
    day: datetime.date,
    selected: List[str],
    needs: NeedsSpecification,
    result: DistributionResult,
) -> Dict:
    warnings = list(result.warnings)
    if needs.unknown:
        warnings.append(f"Ignored needs for unknown stations: {', '.join(needs.unknown)}.")
    if not needs.stations_with_needs():
        warnings.append("No station needs are set for this day.")
    return {
        "day": day.isoformat(),
        "selected": len(selected),
        "assigned": result.assigned_count,
        "assignments": {station: list(ids) for station, ids in result.assignments.items()},
        "unassigned_count": result.unassigned_count,
        "unassigned": list(result.unassigned),
        "relaxed": [{"employee_id": employee_id, "station": station} for employee_id, station in result.relaxed],
        "unmet_needs": dict(result.unmet_needs),
        "warnings": warnings,
    }
