"""Storage boundary used by the planner services.

The engine and reconciler only ever see a ``PlanningRepository``; the
SQLAlchemy-backed implementation below is the production one and tests swap in
an in-memory fake.
"""

from __future__ import annotations

import datetime
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import database
from errors import PersistenceError
from policy import load_active_policy

_logger = logging.getLogger(__name__)

HistoryRow = Tuple[str, str, datetime.date]


class PlanningRepository(ABC):
    @abstractmethod
    def list_employees(self, only_active: bool = True) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def load_competencies(self, employee_ids: Iterable[str]) -> Dict[str, Set[str]]:
        """Return a set for every requested id, empty when nothing is granted."""

    @abstractmethod
    def grant_competency(self, employee_id: str, station: str) -> bool:
        ...

    @abstractmethod
    def revoke_competency(self, employee_id: str, station: str) -> bool:
        ...

    @abstractmethod
    def load_last_stations(self, employee_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        ...

    @abstractmethod
    def load_work_history(
        self, employee_ids: Iterable[str], since: Optional[datetime.date] = None
    ) -> List[HistoryRow]:
        ...

    @abstractmethod
    def load_needs(self, day: datetime.date) -> Dict[str, int]:
        ...

    @abstractmethod
    def save_needs(self, day: datetime.date, values: Dict[str, int]) -> Dict[str, int]:
        ...

    @abstractmethod
    def load_day_assignments(self, day: datetime.date) -> Dict[str, List[str]]:
        ...

    @abstractmethod
    def delete_day_assignments(self, day: datetime.date) -> int:
        ...

    @abstractmethod
    def insert_day_assignments(self, rows: List[Dict[str, Any]]) -> int:
        ...

    @abstractmethod
    def delete_day_history(self, day: datetime.date) -> int:
        ...

    @abstractmethod
    def append_work_history(self, rows: List[Dict[str, Any]]) -> int:
        ...

    def replace_day_assignments(self, day: datetime.date, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
        """Delete then insert; the two steps commit separately.

        Returns ``(removed, inserted)``.
        """
        removed = self.delete_day_assignments(day)
        return removed, self.insert_day_assignments(rows)

    @abstractmethod
    def day_summary(self, day: datetime.date) -> Dict[str, Any]:
        """Headcounts for the day plus needed vs filled per station."""

    def load_policy(self) -> Dict[str, Any]:
        return load_active_policy(None)

    def record_audit(self, actor: str, action: str, day: datetime.date, payload: Dict[str, Any]) -> None:
        return None


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        _logger.error("%s failed: %s", action, exc)
        raise PersistenceError(
            f"Could not {action}",
            detail=str(getattr(exc, "orig", exc)),
            hint="A row with the same key already exists",
        ) from exc
    except SQLAlchemyError as exc:
        _logger.error("%s failed: %s", action, exc)
        raise PersistenceError(
            f"Could not {action}",
            detail=str(getattr(exc, "orig", None) or exc),
            hint="Check that the database is reachable and writable",
        ) from exc


class SqlPlanningRepository(PlanningRepository):
    def __init__(self, session_factory: Callable = database.SessionLocal) -> None:
        self.session_factory = session_factory

    def list_employees(self, only_active: bool = True) -> List[Dict[str, Any]]:
        with _store_errors("load employees"), self.session_factory() as session:
            return database.list_employees(session, only_active=only_active)

    def load_competencies(self, employee_ids: Iterable[str]) -> Dict[str, Set[str]]:
        with _store_errors("load competencies"), self.session_factory() as session:
            return database.get_employee_competencies(session, employee_ids)

    def grant_competency(self, employee_id: str, station: str) -> bool:
        with _store_errors("grant competency"), self.session_factory() as session:
            return database.grant_station(session, employee_id, station)

    def revoke_competency(self, employee_id: str, station: str) -> bool:
        with _store_errors("revoke competency"), self.session_factory() as session:
            return database.revoke_station(session, employee_id, station)

    def load_last_stations(self, employee_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        with _store_errors("load last stations"), self.session_factory() as session:
            return database.get_last_stations(session, employee_ids)

    def load_work_history(
        self, employee_ids: Iterable[str], since: Optional[datetime.date] = None
    ) -> List[HistoryRow]:
        with _store_errors("load work history"), self.session_factory() as session:
            return database.get_work_history(session, employee_ids, since)

    def load_needs(self, day: datetime.date) -> Dict[str, int]:
        with _store_errors("load station needs"), self.session_factory() as session:
            return database.get_station_needs(session, day)

    def save_needs(self, day: datetime.date, values: Dict[str, int]) -> Dict[str, int]:
        with _store_errors("save station needs"), self.session_factory() as session:
            return database.upsert_station_needs(session, day, values)

    def load_day_assignments(self, day: datetime.date) -> Dict[str, List[str]]:
        with _store_errors("load assignments"), self.session_factory() as session:
            return database.get_day_assignments(session, day)

    def delete_day_assignments(self, day: datetime.date) -> int:
        with _store_errors("delete assignments"), self.session_factory() as session:
            return database.delete_day_assignments(session, day)

    def insert_day_assignments(self, rows: List[Dict[str, Any]]) -> int:
        with _store_errors("insert assignments"), self.session_factory() as session:
            return database.insert_day_assignments(session, rows)

    def delete_day_history(self, day: datetime.date) -> int:
        with _store_errors("delete work history"), self.session_factory() as session:
            return database.delete_work_history_for_day(session, day)

    def append_work_history(self, rows: List[Dict[str, Any]]) -> int:
        with _store_errors("insert work history"), self.session_factory() as session:
            return database.append_work_history(session, rows)

    def day_summary(self, day: datetime.date) -> Dict[str, Any]:
        with _store_errors("load day summary"), self.session_factory() as session:
            return database.get_day_summary(session, day)

    def load_policy(self) -> Dict[str, Any]:
        with _store_errors("load policy"):
            return load_active_policy(self.session_factory)

    def record_audit(self, actor: str, action: str, day: datetime.date, payload: Dict[str, Any]) -> None:
        with _store_errors("record audit log"), self.session_factory() as session:
            database.record_audit_log(session, user_id=actor, action=action, target_date=day, payload=payload)
