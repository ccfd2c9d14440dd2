from __future__ import annotations

import datetime
import json
import os
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

from stations import EMPTY_SLOT, MANUAL_STATION, STATIONS, station_order


DATA_DIR = Path(os.environ.get("STATION_PLANNER_DATA_DIR") or Path(__file__).resolve().parent / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = f"sqlite:///{(DATA_DIR / 'planner.db').as_posix()}"
DEFAULT_SHIFT = "Skift 1"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for every planner table living in planner.db."""

    pass


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    shift: Mapped[str] = mapped_column(String(40), nullable=False, default=DEFAULT_SHIFT)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    stations: Mapped[List["EmployeeStation"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )

    @property
    def station_list(self) -> List[str]:
        return sorted({item.station for item in self.stations}, key=station_order)


class EmployeeStation(Base):
    __tablename__ = "employee_stations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    station: Mapped[str] = mapped_column(String(40), nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="stations")

    __table_args__ = (UniqueConstraint("employee_id", "station", name="uq_employee_station"),)


class WorkHistory(Base):
    __tablename__ = "work_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    station: Mapped[str] = mapped_column(String(40), nullable=False)
    work_date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("employee_id", "station", "work_date", name="uq_work_history_employee_station_date"),
    )


class StationNeed(Base):
    __tablename__ = "station_needs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    station: Mapped[str] = mapped_column(String(40), nullable=False)
    need_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    needed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (UniqueConstraint("station", "need_date", name="uq_station_need_date"),)


class DailyAssignment(Base):
    __tablename__ = "daily_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(String(36), nullable=False)
    station: Mapped[str] = mapped_column(String(40), nullable=False)
    assigned_date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    position_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("station", "assigned_date", "position_index", name="uq_assignment_station_slot"),
    )


class Policy(Base):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_policies_name"),)

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="DayPlan")
    target_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database(bind=None) -> None:
    Base.metadata.create_all(bind or engine)


# ---------------------------------------------------------------------------
# Roster


def _employee_to_dict(employee: Employee) -> Dict[str, Any]:
    return {
        "id": employee.id,
        "name": employee.name,
        "shift": employee.shift,
        "active": bool(employee.is_active),
    }


def list_employees(session, only_active: bool = True, shift: Optional[str] = None) -> List[Dict[str, Any]]:
    stmt = select(Employee)
    if only_active:
        stmt = stmt.where(Employee.is_active.is_(True))
    if shift:
        stmt = stmt.where(Employee.shift == shift)
    stmt = stmt.order_by(Employee.name.asc(), Employee.id.asc())
    return [_employee_to_dict(employee) for employee in session.scalars(stmt)]


def create_employee(session, name: str, shift: str = DEFAULT_SHIFT, *, is_active: bool = True) -> Employee:
    label = (name or "").strip()
    if not label:
        raise ValueError("Employee name is required.")
    employee = Employee(name=label, shift=(shift or DEFAULT_SHIFT).strip(), is_active=is_active)
    session.add(employee)
    session.commit()
    session.refresh(employee)
    return employee


def set_employee_active(session, employee_id: str, is_active: bool) -> Optional[Employee]:
    employee = session.get(Employee, employee_id)
    if not employee:
        return None
    employee.is_active = bool(is_active)
    session.commit()
    return employee


# ---------------------------------------------------------------------------
# Competencies


def get_employee_competencies(session, employee_ids: Iterable[str]) -> Dict[str, Set[str]]:
    ids = list(dict.fromkeys(employee_ids))
    mapping: Dict[str, Set[str]] = {employee_id: set() for employee_id in ids}
    if not ids:
        return mapping
    stmt = select(EmployeeStation.employee_id, EmployeeStation.station).where(
        EmployeeStation.employee_id.in_(ids)
    )
    for employee_id, station in session.execute(stmt):
        mapping.setdefault(employee_id, set()).add(station)
    return mapping


def grant_station(session, employee_id: str, station: str) -> bool:
    """Add a competency. Returns False when it already existed."""
    existing = session.scalars(
        select(EmployeeStation).where(
            EmployeeStation.employee_id == employee_id,
            EmployeeStation.station == station,
        )
    ).first()
    if existing:
        return False
    session.add(EmployeeStation(employee_id=employee_id, station=station))
    session.commit()
    return True


def revoke_station(session, employee_id: str, station: str) -> bool:
    """Remove a competency. Returns False when there was nothing to remove."""
    result = session.execute(
        delete(EmployeeStation).where(
            EmployeeStation.employee_id == employee_id,
            EmployeeStation.station == station,
        )
    )
    session.commit()
    return bool(result.rowcount)


# ---------------------------------------------------------------------------
# Work history


def get_last_stations(session, employee_ids: Iterable[str]) -> Dict[str, Optional[str]]:
    ids = list(dict.fromkeys(employee_ids))
    mapping: Dict[str, Optional[str]] = {employee_id: None for employee_id in ids}
    if not ids:
        return mapping
    stmt = (
        select(WorkHistory.employee_id, WorkHistory.station)
        .where(WorkHistory.employee_id.in_(ids))
        .order_by(WorkHistory.work_date.desc())
    )
    seen: Set[str] = set()
    for employee_id, station in session.execute(stmt):
        if employee_id in seen:
            continue
        mapping[employee_id] = station
        seen.add(employee_id)
    return mapping


def get_work_history(
    session,
    employee_ids: Iterable[str],
    since: Optional[datetime.date] = None,
) -> List[Tuple[str, str, datetime.date]]:
    ids = list(dict.fromkeys(employee_ids))
    if not ids:
        return []
    stmt = select(WorkHistory.employee_id, WorkHistory.station, WorkHistory.work_date).where(
        WorkHistory.employee_id.in_(ids)
    )
    if since is not None:
        stmt = stmt.where(WorkHistory.work_date >= since)
    stmt = stmt.order_by(WorkHistory.work_date.desc(), WorkHistory.id.asc())
    return [(row[0], row[1], row[2]) for row in session.execute(stmt)]


def append_work_history(session, rows: Iterable[Dict[str, Any]]) -> int:
    count = 0
    for row in rows:
        session.add(
            WorkHistory(
                employee_id=row["employee_id"],
                station=row["station"],
                work_date=row["work_date"],
            )
        )
        count += 1
    session.commit()
    return count


def delete_work_history_for_day(session, day: datetime.date) -> int:
    result = session.execute(delete(WorkHistory).where(WorkHistory.work_date == day))
    session.commit()
    return int(result.rowcount or 0)


# ---------------------------------------------------------------------------
# Needs


def get_station_needs(session, day: datetime.date) -> Dict[str, int]:
    stmt = select(StationNeed.station, StationNeed.needed_count).where(StationNeed.need_date == day)
    return {station: int(count or 0) for station, count in session.execute(stmt)}


def upsert_station_needs(session, day: datetime.date, values: Dict[str, int]) -> Dict[str, int]:
    """Write one row per catalog station for the day; missing stations are stored as zero."""
    existing = {
        item.station: item
        for item in session.scalars(select(StationNeed).where(StationNeed.need_date == day))
    }
    stored: Dict[str, int] = {}
    for station in STATIONS:
        count = 0 if station == MANUAL_STATION else max(0, int(values.get(station, 0) or 0))
        row = existing.get(station)
        if row:
            row.needed_count = count
        else:
            session.add(StationNeed(station=station, need_date=day, needed_count=count))
        stored[station] = count
    session.commit()
    return stored


# ---------------------------------------------------------------------------
# Assignments


def get_day_assignments(session, day: datetime.date) -> Dict[str, List[str]]:
    stmt = (
        select(DailyAssignment)
        .where(DailyAssignment.assigned_date == day)
        .order_by(DailyAssignment.station, DailyAssignment.position_index, DailyAssignment.id)
    )
    grouped: Dict[str, List[DailyAssignment]] = defaultdict(list)
    for row in session.scalars(stmt):
        grouped[row.station].append(row)
    assignments: Dict[str, List[str]] = {}
    for station in sorted(grouped, key=station_order):
        rows = grouped[station]
        if all(row.position_index is not None for row in rows):
            slots = [EMPTY_SLOT] * (max(row.position_index for row in rows) + 1)
            for row in rows:
                slots[row.position_index] = row.employee_id
            assignments[station] = slots
        else:
            assignments[station] = [row.employee_id for row in rows]
    return assignments


def delete_day_assignments(session, day: datetime.date) -> int:
    result = session.execute(delete(DailyAssignment).where(DailyAssignment.assigned_date == day))
    session.commit()
    return int(result.rowcount or 0)


def insert_day_assignments(session, rows: Iterable[Dict[str, Any]]) -> int:
    count = 0
    for row in rows:
        session.add(
            DailyAssignment(
                employee_id=row["employee_id"],
                station=row["station"],
                assigned_date=row["assigned_date"],
                position_index=row.get("position_index"),
            )
        )
        count += 1
    session.commit()
    return count


def get_day_summary(session, day: datetime.date) -> Dict[str, Any]:
    total_employees = session.scalar(select(func.count()).select_from(Employee)) or 0
    active_employees = session.scalar(
        select(func.count()).select_from(Employee).where(Employee.is_active.is_(True))
    ) or 0
    needs = get_station_needs(session, day)
    filled: Dict[str, int] = defaultdict(int)
    for station, count in session.execute(
        select(DailyAssignment.station, func.count())
        .where(DailyAssignment.assigned_date == day)
        .group_by(DailyAssignment.station)
    ):
        filled[station] = int(count)
    stations = []
    for station in STATIONS:
        if station == MANUAL_STATION:
            continue
        stations.append(
            {
                "station": station,
                "needed": needs.get(station, 0),
                "filled": filled.get(station, 0),
            }
        )
    return {
        "date": day.isoformat(),
        "total_employees": int(total_employees),
        "active_employees": int(active_employees),
        "assignments": int(sum(filled.values())),
        "stations_with_needs": sum(1 for count in needs.values() if count > 0),
        "stations": stations,
    }


# ---------------------------------------------------------------------------
# Policy


def get_active_policy(session) -> Optional[Policy]:
    stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
    return session.scalars(stmt).first()


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    existing: Optional[Policy] = session.execute(select(Policy).where(Policy.name == name)).scalars().first()
    payload = params_dict if isinstance(params_dict, dict) else {}
    if existing:
        existing.paramsJSON = json.dumps(payload)
        existing.lastEditedBy = edited_by
        existing.lastEditedAt = _utcnow()
        session.commit()
        session.refresh(existing)
        return existing
    policy = Policy(
        name=name,
        paramsJSON=json.dumps(payload),
        lastEditedBy=edited_by,
        lastEditedAt=_utcnow(),
    )
    session.add(policy)
    session.commit()
    session.refresh(policy)
    return policy


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "DayPlan",
    target_date: Optional[datetime.date] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_date=target_date,
        payloadJSON=json.dumps(payload or {}),
    )
    session.add(log)
    session.commit()
    return log
