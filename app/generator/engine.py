from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from needs import NeedsSpecification
from rotation import can_assign_to_station
from stations import MANUAL_STATION, schedulable_stations

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateProfile:
    """Everything the engine knows about one selected employee."""

    employee_id: str
    competencies: FrozenSet[str] = frozenset()
    last_station: Optional[str] = None
    visit_counts: Mapping[str, int] = field(default_factory=dict)

    def visits(self, station: str) -> int:
        return int(self.visit_counts.get(station, 0) or 0)


@dataclass
class DistributionResult:
    assignments: Dict[str, List[str]]
    unassigned_count: int
    unassigned: List[str] = field(default_factory=list)
    relaxed: List[Tuple[str, str]] = field(default_factory=list)
    unmet_needs: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def assigned_count(self) -> int:
        return sum(len(ids) for station, ids in self.assignments.items() if station != MANUAL_STATION)


class AssignmentEngine:
    """Two-phase greedy matching of a day's roster onto station needs.

    Phase 1 honours the rotation rule (nobody returns to the station they
    worked most recently). Phase 2 drops that rule and only runs over needs
    Phase 1 could not cover. In both phases the most constrained station is
    served first and the least flexible, least experienced candidate wins.
    """

    def __init__(
        self,
        profiles: Mapping[str, CandidateProfile],
        stations: Optional[Sequence[str]] = None,
    ) -> None:
        self.profiles = dict(profiles)
        catalog = list(stations) if stations is not None else schedulable_stations()
        self.stations: List[str] = [station for station in catalog if station != MANUAL_STATION]

    def distribute(
        self,
        selected_employee_ids: Iterable[str],
        needs,
        manual_station_value: Optional[str] = None,
    ) -> DistributionResult:
        if not isinstance(needs, NeedsSpecification):
            needs = NeedsSpecification(needs)
        roster = list(dict.fromkeys(employee_id for employee_id in selected_employee_ids if employee_id))
        positions = {employee_id: idx for idx, employee_id in enumerate(roster)}
        profiles = [self.profiles.get(employee_id) or CandidateProfile(employee_id) for employee_id in roster]
        last_stations = {profile.employee_id: profile.last_station for profile in profiles}

        open_stations = [station for station in self.stations if needs.need_for(station) > 0]
        assignments: Dict[str, List[str]] = {station: [] for station in open_stations}
        taken: Set[str] = set()
        relaxed: List[Tuple[str, str]] = []

        for respect_rotation in (True, False):
            while True:
                pick = self._next_pick(
                    open_stations,
                    needs,
                    assignments,
                    profiles,
                    taken,
                    positions,
                    last_stations if respect_rotation else None,
                )
                if pick is None:
                    break
                station, employee_id = pick
                assignments[station].append(employee_id)
                taken.add(employee_id)
                if not respect_rotation:
                    relaxed.append((employee_id, station))
                _logger.debug(
                    "Assigned %s to %s (%s)",
                    employee_id,
                    station,
                    "rotation" if respect_rotation else "fallback",
                )

        manual_value = (manual_station_value or "").strip()
        if manual_value:
            assignments[MANUAL_STATION] = [manual_value]

        unassigned = [employee_id for employee_id in roster if employee_id not in taken]
        unmet = {
            station: needs.need_for(station) - len(assignments[station])
            for station in open_stations
            if needs.need_for(station) > len(assignments[station])
        }
        result = DistributionResult(
            assignments=assignments,
            unassigned_count=len(unassigned),
            unassigned=unassigned,
            relaxed=relaxed,
            unmet_needs=unmet,
        )
        result.warnings.extend(self._warnings(result))
        _logger.info(
            "Distributed %d of %d employees over %d stations (%d unassigned)",
            len(taken),
            len(roster),
            len(open_stations),
            len(unassigned),
        )
        return result

    def _next_pick(
        self,
        open_stations: List[str],
        needs: NeedsSpecification,
        assignments: Dict[str, List[str]],
        profiles: List[CandidateProfile],
        taken: Set[str],
        positions: Dict[str, int],
        last_stations: Optional[Dict[str, Optional[str]]],
    ) -> Optional[Tuple[str, str]]:
        free = [profile for profile in profiles if profile.employee_id not in taken]
        scarcity: List[Tuple[str, int]] = []
        for station in open_stations:
            if needs.need_for(station) - len(assignments[station]) <= 0:
                continue
            competent = sum(1 for profile in free if station in profile.competencies)
            if competent > 0:
                scarcity.append((station, competent))
        # sorted() is stable, so equal scarcity keeps catalog order.
        for station, _count in sorted(scarcity, key=lambda item: item[1]):
            candidates = [
                profile
                for profile in free
                if station in profile.competencies
                and (last_stations is None or can_assign_to_station(profile.employee_id, station, last_stations))
            ]
            if not candidates:
                continue
            best = min(
                candidates,
                key=lambda profile: (
                    len(profile.competencies),
                    profile.visits(station),
                    positions[profile.employee_id],
                ),
            )
            return station, best.employee_id
        return None

    @staticmethod
    def _warnings(result: DistributionResult) -> List[str]:
        warnings: List[str] = []
        if result.unassigned_count:
            warnings.append(
                f"{result.unassigned_count} selected employees lack competency for the open stations."
            )
        for station, missing in result.unmet_needs.items():
            warnings.append(f"No coverage for {missing} of the places needed at {station}.")
        for employee_id, station in result.relaxed:
            warnings.append(f"Employee {employee_id} placed at {station} again; rotation relaxed to cover the need.")
        return warnings
