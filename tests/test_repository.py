from __future__ import annotations

import datetime
import json
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from database import (  # noqa: E402
    AuditLog,
    Base,
    DailyAssignment,
    StationNeed,
    WorkHistory,
    create_employee,
    set_employee_active,
    upsert_policy,
)
from day_plan import DayPlan, commit_day_plan, load_day_plan  # noqa: E402
from errors import PersistenceError  # noqa: E402
from generator.api import distribute_for_day  # noqa: E402
from policy import build_default_policy, ensure_default_policy, load_active_policy  # noqa: E402
from repository import SqlPlanningRepository  # noqa: E402

DAY = datetime.date(2024, 5, 10)


@pytest.fixture()
def session_factory(monkeypatch):
    """In-memory SQLite shared by every session the repository opens."""
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", Session)
    Base.metadata.create_all(engine)
    yield Session
    engine.dispose()


@pytest.fixture()
def repo(session_factory) -> SqlPlanningRepository:
    return SqlPlanningRepository(session_factory)


def _employee(session_factory, name: str, stations=(), active: bool = True) -> str:
    with session_factory() as session:
        employee = create_employee(session, name, is_active=active)
    for station in stations:
        SqlPlanningRepository(session_factory).grant_competency(employee.id, station)
    return employee.id


def test_list_employees_filters_inactive(session_factory, repo) -> None:
    active = _employee(session_factory, "Anna")
    inactive = _employee(session_factory, "Bo")
    with session_factory() as session:
        set_employee_active(session, inactive, False)

    assert [row["id"] for row in repo.list_employees()] == [active]
    assert {row["id"] for row in repo.list_employees(only_active=False)} == {active, inactive}
    assert repo.list_employees()[0]["shift"] == db.DEFAULT_SHIFT


def test_competency_grant_is_idempotent(session_factory, repo) -> None:
    anna = _employee(session_factory, "Anna")

    assert repo.grant_competency(anna, "Pack") is True
    assert repo.grant_competency(anna, "Pack") is False
    assert repo.load_competencies([anna, "ghost"]) == {anna: {"Pack"}, "ghost": set()}
    assert repo.revoke_competency(anna, "Pack") is True
    assert repo.revoke_competency(anna, "Pack") is False


def test_needs_upsert_keeps_one_row_per_station(session_factory, repo) -> None:
    repo.save_needs(DAY, {"Pack": 2, "FL": 3})
    stored = repo.save_needs(DAY, {"Pack": 4, "KM": 1})

    assert stored["Pack"] == 4
    assert stored["KM"] == 1
    assert stored["FL"] == 0
    with session_factory() as session:
        rows = session.scalars(select(StationNeed).where(StationNeed.need_date == DAY)).all()
    assert len(rows) == 10
    assert repo.load_needs(DAY)["Pack"] == 4


def test_last_station_and_windowed_history(session_factory, repo) -> None:
    anna = _employee(session_factory, "Anna")
    repo.append_work_history(
        [
            {"employee_id": anna, "station": "Pack", "work_date": datetime.date(2023, 1, 2)},
            {"employee_id": anna, "station": "KM", "work_date": datetime.date(2024, 5, 1)},
            {"employee_id": anna, "station": "Rep", "work_date": datetime.date(2024, 4, 1)},
        ]
    )

    assert repo.load_last_stations([anna, "ghost"]) == {anna: "KM", "ghost": None}
    recent = repo.load_work_history([anna], since=datetime.date(2024, 1, 1))
    assert sorted(row[1] for row in recent) == ["KM", "Rep"]


def test_save_and_reload_day(session_factory, repo) -> None:
    anna = _employee(session_factory, "Anna", ["Pack"])
    erik = _employee(session_factory, "Erik", ["KM"])
    plan = DayPlan(day=DAY, selected=[anna, erik], assignments={"Pack": ["", anna], "KM": [erik], "FL": ["Lead"]})

    summary = commit_day_plan(repo, plan, actor="tests")

    assert summary["saved"] == 2
    reloaded = load_day_plan(repo, DAY)
    assert reloaded.assignments == {"Pack": ["", anna], "KM": [erik]}
    with session_factory() as session:
        history = session.scalars(select(WorkHistory).where(WorkHistory.work_date == DAY)).all()
        audit = session.scalars(select(AuditLog)).all()
    assert {(row.employee_id, row.station) for row in history} == {(anna, "Pack"), (erik, "KM")}
    assert audit[-1].action == "save"
    assert json.loads(audit[-1].payloadJSON)["saved"] == 2


def test_second_save_replaces_rows_and_history(session_factory, repo) -> None:
    anna = _employee(session_factory, "Anna", ["Pack", "KM"])
    commit_day_plan(repo, DayPlan(day=DAY, selected=[anna], assignments={"Pack": [anna]}))
    commit_day_plan(repo, DayPlan(day=DAY, selected=[anna], assignments={"KM": [anna]}))

    with session_factory() as session:
        assignments = session.scalars(select(DailyAssignment)).all()
        history = session.scalars(select(WorkHistory)).all()
    assert [(row.station, row.employee_id) for row in assignments] == [("KM", anna)]
    assert [(row.station, row.work_date) for row in history] == [("KM", DAY)]


def test_duplicate_slot_raises_persistence_error(session_factory, repo) -> None:
    anna = _employee(session_factory, "Anna")
    erik = _employee(session_factory, "Erik")
    rows = [
        {"employee_id": anna, "station": "Pack", "assigned_date": DAY, "position_index": 0},
        {"employee_id": erik, "station": "Pack", "assigned_date": DAY, "position_index": 0},
    ]

    with pytest.raises(PersistenceError) as excinfo:
        repo.insert_day_assignments(rows)

    assert excinfo.value.message == "Could not insert assignments"
    assert excinfo.value.detail
    assert excinfo.value.as_dict()["hint"]


def test_day_summary_counts(session_factory, repo) -> None:
    anna = _employee(session_factory, "Anna", ["Pack"])
    _employee(session_factory, "Bo", active=False)
    repo.save_needs(DAY, {"Pack": 2, "KM": 1})
    commit_day_plan(repo, DayPlan(day=DAY, selected=[anna], assignments={"Pack": [anna]}))

    summary = repo.day_summary(DAY)

    assert summary["total_employees"] == 2
    assert summary["active_employees"] == 1
    assert summary["assignments"] == 1
    assert summary["stations_with_needs"] == 2
    pack = next(item for item in summary["stations"] if item["station"] == "Pack")
    assert pack == {"station": "Pack", "needed": 2, "filled": 1}


def test_policy_defaults_and_overrides(session_factory, repo) -> None:
    ensure_default_policy(session_factory)
    ensure_default_policy(session_factory)
    assert repo.load_policy()["rotation"]["history_window_months"] == 6

    params = build_default_policy()
    params["rotation"]["confirm_min_visits"] = "5"
    params["stations"]["positional_capacity"] = {"pack": 12, "Auto Pack": 8, "FL": 1, "Nowhere": 3}
    with session_factory() as session:
        upsert_policy(session, "Wider grid", params, edited_by="tests")

    policy = load_active_policy(session_factory)
    assert policy["rotation"]["confirm_min_visits"] == 5
    assert policy["stations"]["positional_capacity"] == {"Pack": 12, "Auto Plock": 6, "Auto Pack": 8}
    assert load_active_policy(None)["stations"]["positional_capacity"]["Auto Plock"] == 6


def test_distribution_against_sqlite(session_factory, repo) -> None:
    anna = _employee(session_factory, "Anna", ["Pack", "Plock"])
    erik = _employee(session_factory, "Erik", ["Pack"])
    repo.append_work_history([{"employee_id": anna, "station": "Plock", "work_date": DAY - datetime.timedelta(days=1)}])
    repo.save_needs(DAY, {"Pack": 1, "Plock": 1})

    summary, plan = distribute_for_day(repo, DAY, [anna, erik], today=DAY)

    assert plan.assignments == {"Plock": [anna], "Pack": [erik]}
    assert summary["relaxed"] == [{"employee_id": anna, "station": "Plock"}]
