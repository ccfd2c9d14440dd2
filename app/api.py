"""FastAPI wrapper over the station planner services.

The in-progress plan for each day lives in process memory until it is saved;
only ``/save`` writes assignments and work history.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from competency import CompetencyRegistry  # noqa: E402
from database import (  # noqa: E402
    SessionLocal,
    create_employee,
    get_active_policy,
    init_database,
    record_audit_log,
    upsert_policy,
)
from day_plan import DayPlan, commit_day_plan, load_day_plan  # noqa: E402
from errors import InvalidMoveError, PersistenceError, ValidationError  # noqa: E402
from generator.api import distribute_for_day  # noqa: E402
from needs import NeedsSpecification, save_station_needs  # noqa: E402
from policy import (  # noqa: E402
    confirm_min_visits,
    ensure_default_policy,
    history_window_months,
    positional_capacities,
)
from reconcile import MoveApplied, MoveProposal, OverrideReconciler  # noqa: E402
from repository import PlanningRepository, SqlPlanningRepository  # noqa: E402
from rotation import RotationHistoryTracker  # noqa: E402
from validation import validate_day_plan  # noqa: E402

_logger = logging.getLogger(__name__)

# Unsaved plans keyed by day; a single editor is assumed.
_PLANS: Dict[datetime.date, DayPlan] = {}


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    ensure_default_policy(SessionLocal)
    yield


app = FastAPI(title="Station Planner API", version="0.1", lifespan=lifespan)


@app.exception_handler(InvalidMoveError)
async def invalid_move_handler(request: Request, exc: InvalidMoveError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    _logger.error("Persistence failure on %s: %s", request.url.path, exc.describe())
    return JSONResponse(status_code=500, content={"detail": exc.as_dict()})


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_repository() -> PlanningRepository:
    return SqlPlanningRepository(SessionLocal)


def _parse_day(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="day must be YYYY-MM-DD")


def _current_plan(repository: PlanningRepository, day: datetime.date) -> DayPlan:
    plan = _PLANS.get(day)
    if plan is None:
        plan = load_day_plan(repository, day)
        _PLANS[day] = plan
    return plan


def _reconciler(repository: PlanningRepository, plan: DayPlan) -> OverrideReconciler:
    policy = repository.load_policy()
    tracker = RotationHistoryTracker(repository, window_months=history_window_months(policy))
    return OverrideReconciler(
        plan,
        tracker,
        capacities=positional_capacities(policy),
        confirm_min_visits=confirm_min_visits(policy),
    )


def _parse_index(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="target_index must be an integer")


def _move_payload(outcome: Any, plan: DayPlan) -> Dict[str, Any]:
    if isinstance(outcome, MoveProposal):
        return {
            "status": "confirm",
            "message": outcome.message,
            "proposal": {
                "employee_id": outcome.employee_id,
                "from_station": outcome.from_station,
                "to_station": outcome.to_station,
                "target_index": outcome.target_index,
                "visit_count": outcome.visit_count,
                "most_visited": outcome.most_visited,
            },
            "plan": plan.as_dict(),
        }
    assert isinstance(outcome, MoveApplied)
    return {
        "status": "applied" if outcome.changed else "unchanged",
        "displaced": outcome.displaced,
        "plan": plan.as_dict(),
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/employees")
def employees(
    include_inactive: bool = Query(False),
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    rows = repository.list_employees(only_active=not include_inactive)
    return JSONResponse(content=jsonable_encoder({"employees": rows}))


@app.post("/api/v1/employees")
def add_employee(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    name = (payload.get("name") or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    employee = create_employee(db, name, payload.get("shift") or database.DEFAULT_SHIFT)
    return JSONResponse(
        status_code=201,
        content=jsonable_encoder(
            {"id": employee.id, "name": employee.name, "shift": employee.shift, "active": employee.is_active}
        ),
    )


@app.get("/api/v1/employees/{employee_id}/history")
def employee_history(
    employee_id: str,
    limit: int = Query(5, ge=0, le=50),
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    policy = repository.load_policy()
    tracker = RotationHistoryTracker(repository, window_months=history_window_months(policy))
    return JSONResponse(content=jsonable_encoder(tracker.history_summary(employee_id, limit)))


@app.get("/api/v1/employees/{employee_id}/competencies")
def employee_competencies(employee_id: str, repository: PlanningRepository = Depends(get_repository)) -> JSONResponse:
    stations = CompetencyRegistry(repository).qualified_stations(employee_id)
    return JSONResponse(content={"employee_id": employee_id, "stations": sorted(stations)})


@app.put("/api/v1/employees/{employee_id}/competencies/{station}")
def grant_competency(
    employee_id: str,
    station: str,
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    created = CompetencyRegistry(repository).grant(employee_id, station)
    return JSONResponse(content={"employee_id": employee_id, "station": station, "created": created})


@app.delete("/api/v1/employees/{employee_id}/competencies/{station}")
def revoke_competency(
    employee_id: str,
    station: str,
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    removed = CompetencyRegistry(repository).revoke(employee_id, station)
    return JSONResponse(content={"employee_id": employee_id, "station": station, "removed": removed})


@app.get("/api/v1/days/{day}/needs")
def day_needs(day: str, repository: PlanningRepository = Depends(get_repository)) -> JSONResponse:
    target = _parse_day(day)
    needs = NeedsSpecification.for_day(repository, target)
    return JSONResponse(content={"day": target.isoformat(), "needs": needs.as_dict()})


@app.put("/api/v1/days/{day}/needs")
def set_day_needs(
    day: str,
    payload: Dict[str, Any],
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    target = _parse_day(day)
    values = payload.get("needs")
    if not isinstance(values, dict):
        raise HTTPException(status_code=400, detail="needs must be an object of station counts")
    spec = NeedsSpecification(values)
    stored = save_station_needs(repository, target, values)
    return JSONResponse(
        content={"day": target.isoformat(), "needs": stored.as_dict(), "ignored": list(spec.unknown)}
    )


@app.post("/api/v1/days/{day}/distribute")
def distribute(
    day: str,
    payload: Dict[str, Any],
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    target = _parse_day(day)
    selected = payload.get("selected")
    if not isinstance(selected, list):
        raise HTTPException(status_code=400, detail="selected must be a list of employee ids")
    actor = (payload.get("actor") or "api").strip() or "api"
    summary, plan = distribute_for_day(
        repository,
        target,
        [str(item) for item in selected],
        payload.get("manual_value"),
        actor=actor,
    )
    _PLANS[target] = plan
    return JSONResponse(content=jsonable_encoder({"summary": summary, "plan": plan.as_dict()}))


@app.get("/api/v1/days/{day}/plan")
def day_plan(day: str, repository: PlanningRepository = Depends(get_repository)) -> JSONResponse:
    target = _parse_day(day)
    return JSONResponse(content=jsonable_encoder(_current_plan(repository, target).as_dict()))


@app.post("/api/v1/days/{day}/moves")
def move_employee(
    day: str,
    payload: Dict[str, Any],
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    target = _parse_day(day)
    plan = _current_plan(repository, target)
    outcome = _reconciler(repository, plan).move(
        payload.get("employee_id") or "",
        payload.get("from_station") or "",
        payload.get("to_station") or "",
        _parse_index(payload.get("target_index")),
    )
    return JSONResponse(content=jsonable_encoder(_move_payload(outcome, plan)))


@app.post("/api/v1/days/{day}/moves/confirm")
def confirm_move(
    day: str,
    payload: Dict[str, Any],
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    target = _parse_day(day)
    plan = _current_plan(repository, target)
    proposal = MoveProposal(
        employee_id=payload.get("employee_id") or "",
        from_station=payload.get("from_station") or "",
        to_station=payload.get("to_station") or "",
        target_index=_parse_index(payload.get("target_index")),
        visit_count=int(payload.get("visit_count") or 0),
        most_visited=payload.get("most_visited"),
    )
    reconciler = _reconciler(repository, plan)
    # Only a proposal the gate would issue right now can be confirmed.
    current = reconciler.propose_move(
        proposal.employee_id, proposal.from_station, proposal.to_station, proposal.target_index
    )
    if current != proposal:
        raise HTTPException(status_code=409, detail="Proposal is stale or does not need confirmation")
    outcome = reconciler.confirm_move(proposal)
    return JSONResponse(content=jsonable_encoder(_move_payload(outcome, plan)))


@app.put("/api/v1/days/{day}/manual")
def set_manual_value(
    day: str,
    payload: Dict[str, Any],
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    target = _parse_day(day)
    plan = _current_plan(repository, target)
    _reconciler(repository, plan).set_manual_value(payload.get("value"))
    return JSONResponse(content=jsonable_encoder(plan.as_dict()))


@app.post("/api/v1/days/{day}/clear")
def clear_plan(day: str, repository: PlanningRepository = Depends(get_repository)) -> JSONResponse:
    target = _parse_day(day)
    plan = _current_plan(repository, target)
    _reconciler(repository, plan).clear()
    return JSONResponse(content=jsonable_encoder(plan.as_dict()))


@app.get("/api/v1/days/{day}/validate")
def validate_plan(day: str, repository: PlanningRepository = Depends(get_repository)) -> JSONResponse:
    target = _parse_day(day)
    plan = _current_plan(repository, target)
    policy = repository.load_policy()
    report = validate_day_plan(
        plan.assignments,
        needs=NeedsSpecification.for_day(repository, target).as_dict(),
        competencies=CompetencyRegistry(repository).load(plan.assigned_ids()),
        capacities=positional_capacities(policy),
    )
    report["day"] = target.isoformat()
    return JSONResponse(content=jsonable_encoder(report))


@app.post("/api/v1/days/{day}/save")
def save_plan(
    day: str,
    payload: Optional[Dict[str, Any]] = None,
    repository: PlanningRepository = Depends(get_repository),
) -> JSONResponse:
    target = _parse_day(day)
    plan = _PLANS.get(target)
    if plan is None:
        raise HTTPException(status_code=404, detail="No plan in progress for this day")
    actor = ((payload or {}).get("actor") or "api").strip() or "api"
    summary = commit_day_plan(repository, plan, actor=actor)
    return JSONResponse(content=jsonable_encoder(summary))


@app.get("/api/v1/days/{day}/summary")
def day_summary(day: str, repository: PlanningRepository = Depends(get_repository)) -> JSONResponse:
    target = _parse_day(day)
    return JSONResponse(content=jsonable_encoder(repository.day_summary(target)))


@app.get("/api/v1/policy/active")
def active_policy(db=Depends(get_db)) -> JSONResponse:
    policy = get_active_policy(db)
    if not policy:
        raise HTTPException(status_code=404, detail="No active policy found")
    payload = {
        "id": policy.id,
        "name": policy.name,
        "params": policy.params_dict(),
        "lastEditedBy": policy.lastEditedBy,
        "lastEditedAt": policy.lastEditedAt,
    }
    return JSONResponse(content=jsonable_encoder(payload))


@app.put("/api/v1/policy/active")
def set_active_policy(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    name = payload.get("name")
    params = payload.get("params") or {}
    actor = (payload.get("actor") or "api").strip() or "api"
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    policy = upsert_policy(db, name=name, params_dict=params, edited_by=actor)
    record_audit_log(db, user_id=actor, action="POLICY_EDIT", target_type="Policy", payload={"name": policy.name})
    return JSONResponse(
        content=jsonable_encoder(
            {
                "id": policy.id,
                "name": policy.name,
                "params": policy.params_dict(),
                "lastEditedBy": policy.lastEditedBy,
                "lastEditedAt": policy.lastEditedAt,
            }
        )
    )
