"""Manual overrides applied on top of a generated day plan.

A move either applies immediately or comes back as a ``MoveProposal`` when the
employee would return to the station they have visited most in the rotation
window. Proposals carry everything needed to apply them later, so nothing is
kept pending on the reconciler itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple, Union

from day_plan import DayPlan
from errors import InvalidMoveError
from rotation import RotationHistoryTracker, most_visited_station
from stations import (
    EMPTY_SLOT,
    MANUAL_STATION,
    UNASSIGNED,
    canonical_station,
    normalize_station,
    positional_capacity,
)

_logger = logging.getLogger(__name__)

DEFAULT_CONFIRM_MIN_VISITS = 3


@dataclass(frozen=True)
class MoveApplied:
    employee_id: str
    from_station: str
    to_station: str
    target_index: Optional[int] = None
    displaced: Optional[str] = None
    changed: bool = True


@dataclass(frozen=True)
class MoveProposal:
    employee_id: str
    from_station: str
    to_station: str
    target_index: Optional[int]
    visit_count: int
    most_visited: Optional[str]

    @property
    def message(self) -> str:
        return (
            f"Employee {self.employee_id} has worked {self.to_station} {self.visit_count} times "
            "in the rotation window. Confirm the move?"
        )


MoveOutcome = Union[MoveApplied, MoveProposal]


class OverrideReconciler:
    def __init__(
        self,
        plan: DayPlan,
        tracker: Optional[RotationHistoryTracker] = None,
        *,
        capacities: Optional[Mapping[str, int]] = None,
        confirm_min_visits: int = DEFAULT_CONFIRM_MIN_VISITS,
    ) -> None:
        self.plan = plan
        self.tracker = tracker
        self.capacities = dict(capacities) if capacities is not None else None
        self.confirm_min_visits = max(1, int(confirm_min_visits))

    # ------------------------------------------------------------------
    # Moves

    def move(
        self,
        employee_id: str,
        from_station: str,
        to_station: str,
        target_index: Optional[int] = None,
    ) -> MoveOutcome:
        proposal = self.propose_move(employee_id, from_station, to_station, target_index)
        if proposal is not None:
            _logger.info(
                "Move of %s to %s needs confirmation (%d visits)",
                proposal.employee_id,
                proposal.to_station,
                proposal.visit_count,
            )
            return proposal
        return self._apply(employee_id, from_station, to_station, target_index)

    def propose_move(
        self,
        employee_id: str,
        from_station: str,
        to_station: str,
        target_index: Optional[int] = None,
    ) -> Optional[MoveProposal]:
        """Return a proposal when the move needs confirmation, None otherwise.

        Raises ``InvalidMoveError`` for a move that could never be applied.
        """
        employee_id, source, destination, index = self._resolve(employee_id, from_station, to_station, target_index)
        # Reordering within one station never needs confirmation.
        if destination == UNASSIGNED or source == destination or self.tracker is None:
            return None
        counts = self.tracker.visit_counts(employee_id)
        most_visited, _most = most_visited_station(counts)
        visits = int(counts.get(destination, 0))
        if destination == most_visited and visits >= self.confirm_min_visits:
            return MoveProposal(
                employee_id=employee_id,
                from_station=source,
                to_station=destination,
                target_index=index,
                visit_count=visits,
                most_visited=most_visited,
            )
        return None

    def confirm_move(self, proposal: MoveProposal) -> MoveApplied:
        return self._apply(proposal.employee_id, proposal.from_station, proposal.to_station, proposal.target_index)

    def cancel_move(self, proposal: MoveProposal) -> None:
        _logger.info("Cancelled move of %s to %s", proposal.employee_id, proposal.to_station)

    # ------------------------------------------------------------------
    # Plan-wide edits

    def clear(self) -> None:
        manual = self.plan.manual_value
        self.plan.assignments = {MANUAL_STATION: [manual]} if manual else {}

    def unassigned(self) -> List[str]:
        return self.plan.unassigned()

    def set_manual_value(self, value: Optional[str]) -> str:
        text = (value or "").strip()
        if text:
            self.plan.assignments[MANUAL_STATION] = [text]
        else:
            self.plan.assignments.pop(MANUAL_STATION, None)
        return text

    # ------------------------------------------------------------------
    # Internals

    def _station(self, label: str) -> str:
        if normalize_station(label) == UNASSIGNED:
            return UNASSIGNED
        name = canonical_station(label)
        if name is None:
            raise InvalidMoveError(f"Unknown station '{label}'.")
        if name == MANUAL_STATION:
            raise InvalidMoveError(f"{MANUAL_STATION} is filled by free text, not by moving employees.")
        return name

    def _capacity(self, station: str) -> int:
        if station == UNASSIGNED:
            return 0
        return positional_capacity(station, self.capacities)

    def _resolve(
        self,
        employee_id: str,
        from_station: str,
        to_station: str,
        target_index: Optional[int],
    ) -> Tuple[str, str, str, Optional[int]]:
        employee_id = (employee_id or "").strip()
        if not employee_id:
            raise InvalidMoveError("Employee id is required.")
        source = self._station(from_station)
        destination = self._station(to_station)

        if source == UNASSIGNED:
            if employee_id not in self.plan.selected or self.plan.station_of(employee_id) is not None:
                raise InvalidMoveError(f"Employee {employee_id} is not in the unassigned pool.")
        elif employee_id not in self.plan.assignments.get(source, []):
            raise InvalidMoveError(f"Employee {employee_id} is not at {source}.")

        capacity = self._capacity(destination)
        if not capacity:
            return employee_id, source, destination, None
        if target_index is None:
            target_index = self._first_free_slot(employee_id, source, destination, capacity)
        elif not 0 <= int(target_index) < capacity:
            raise InvalidMoveError(f"Slot {target_index} is outside {destination} (0-{capacity - 1}).")
        return employee_id, source, destination, int(target_index)

    def _first_free_slot(self, employee_id: str, source: str, destination: str, capacity: int) -> int:
        slots = self._padded(destination, capacity)
        if source == destination:
            return slots.index(employee_id)
        for idx, occupant in enumerate(slots[:capacity]):
            if occupant == EMPTY_SLOT:
                return idx
        raise InvalidMoveError(f"{destination} has no free slot.")

    def _padded(self, station: str, capacity: int) -> List[str]:
        slots = list(self.plan.assignments.get(station, []))
        if len(slots) < capacity:
            slots.extend([EMPTY_SLOT] * (capacity - len(slots)))
        return slots

    def _is_noop(self, employee_id: str, source: str, destination: str, index: Optional[int]) -> bool:
        if source != destination:
            return False
        if index is None:
            return True
        return self._padded(destination, self._capacity(destination)).index(employee_id) == index

    def _apply(
        self,
        employee_id: str,
        from_station: str,
        to_station: str,
        target_index: Optional[int],
    ) -> MoveApplied:
        employee_id, source, destination, index = self._resolve(employee_id, from_station, to_station, target_index)
        if self._is_noop(employee_id, source, destination, index):
            return MoveApplied(employee_id, source, destination, index, changed=False)

        assignments = self.plan.assignments
        displaced: Optional[str] = None
        capacity = self._capacity(destination)
        if source == destination:
            slots = self._padded(destination, capacity)
            slots[slots.index(employee_id)] = EMPTY_SLOT
            displaced = slots[index] or None
            slots[index] = employee_id
            assignments[destination] = slots
        else:
            if source != UNASSIGNED:
                assignments[source] = [occupant for occupant in assignments[source] if occupant != employee_id]
            if destination != UNASSIGNED:
                if capacity:
                    slots = self._padded(destination, capacity)
                    displaced = slots[index] or None
                    slots[index] = employee_id
                    assignments[destination] = slots
                else:
                    assignments.setdefault(destination, []).append(employee_id)

        if displaced:
            _logger.info("%s displaced from %s slot %s", displaced, destination, index)
        _logger.debug("Moved %s from %s to %s", employee_id, source, destination)
        return MoveApplied(employee_id, source, destination, index, displaced=displaced)
