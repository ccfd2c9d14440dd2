from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, Set

from errors import ValidationError
from repository import PlanningRepository
from stations import canonical_station

_logger = logging.getLogger(__name__)


class CompetencyRegistry:
    """Per-employee station qualifications, cached after the first batched load."""

    def __init__(self, repository: PlanningRepository) -> None:
        self.repository = repository
        self._cache: Dict[str, Set[str]] = {}

    def load(self, employee_ids: Iterable[str]) -> Dict[str, FrozenSet[str]]:
        ids = list(dict.fromkeys(employee_ids))
        missing = [employee_id for employee_id in ids if employee_id not in self._cache]
        if missing:
            fetched = self.repository.load_competencies(missing)
            for employee_id in missing:
                self._cache[employee_id] = set(fetched.get(employee_id) or ())
        return {employee_id: frozenset(self._cache[employee_id]) for employee_id in ids}

    def qualified_stations(self, employee_id: str) -> FrozenSet[str]:
        return self.load([employee_id])[employee_id]

    def is_qualified(self, employee_id: str, station: str) -> bool:
        name = canonical_station(station)
        if name is None:
            return False
        return name in self.qualified_stations(employee_id)

    def grant(self, employee_id: str, station: str) -> bool:
        name = self._validated(employee_id, station)
        created = self.repository.grant_competency(employee_id, name)
        if employee_id in self._cache:
            self._cache[employee_id].add(name)
        if created:
            _logger.info("Granted %s to employee %s", name, employee_id)
        return created

    def revoke(self, employee_id: str, station: str) -> bool:
        name = self._validated(employee_id, station)
        removed = self.repository.revoke_competency(employee_id, name)
        if employee_id in self._cache:
            self._cache[employee_id].discard(name)
        if removed:
            _logger.info("Revoked %s from employee %s", name, employee_id)
        return removed

    def invalidate(self) -> None:
        self._cache.clear()

    @staticmethod
    def _validated(employee_id: str, station: str) -> str:
        if not (employee_id or "").strip():
            raise ValidationError("Employee id is required.")
        name = canonical_station(station)
        if name is None:
            raise ValidationError(f"Unknown station '{station}'.")
        return name
