from __future__ import annotations

import datetime
import logging
from typing import Dict, List, Mapping, Optional

from repository import PlanningRepository
from stations import MANUAL_STATION, canonical_station, schedulable_stations

_logger = logging.getLogger(__name__)


class NeedsSpecification:
    """Required headcount per station for one day. Absent stations need nobody."""

    def __init__(self, values: Optional[Mapping[str, int]] = None) -> None:
        self.unknown: List[str] = []
        self._values: Dict[str, int] = {}
        for station, count in (values or {}).items():
            name = canonical_station(station)
            if name is None:
                self.unknown.append(station)
                continue
            try:
                amount = int(count or 0)
            except (TypeError, ValueError):
                amount = 0
            self._values[name] = max(0, amount)
        if self.unknown:
            _logger.warning("Ignoring needs for unknown stations: %s", ", ".join(self.unknown))

    @classmethod
    def for_day(cls, repository: PlanningRepository, day: datetime.date) -> "NeedsSpecification":
        return cls(repository.load_needs(day))

    def need_for(self, station: str) -> int:
        name = canonical_station(station)
        if name is None or name == MANUAL_STATION:
            return 0
        return self._values.get(name, 0)

    def stations_with_needs(self) -> List[str]:
        return [station for station in schedulable_stations() if self.need_for(station) > 0]

    def total(self) -> int:
        return sum(self.need_for(station) for station in schedulable_stations())

    def as_dict(self) -> Dict[str, int]:
        return {station: self.need_for(station) for station in schedulable_stations()}


def save_station_needs(
    repository: PlanningRepository,
    day: datetime.date,
    values: Mapping[str, int],
) -> NeedsSpecification:
    """Upsert one row per station for ``day`` and return what was stored."""
    spec = NeedsSpecification(values)
    stored = repository.save_needs(day, spec.as_dict())
    _logger.info("Saved needs for %s (%d people across %d stations)", day, spec.total(), len(spec.stations_with_needs()))
    return NeedsSpecification(stored)
