from __future__ import annotations

import argparse
import datetime
import sys
from pathlib import Path
from typing import Dict, List, Tuple

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import SessionLocal, init_database  # noqa: E402
from day_plan import commit_day_plan, load_day_plan  # noqa: E402
from generator.api import distribute_for_day  # noqa: E402
from needs import save_station_needs  # noqa: E402
from policy import ensure_default_policy, positional_capacities  # noqa: E402
from reconcile import MoveProposal, OverrideReconciler  # noqa: E402
from repository import SqlPlanningRepository  # noqa: E402
from rotation import RotationHistoryTracker  # noqa: E402
from validation import validate_day_plan  # noqa: E402


DEMO_NEEDS: Dict[str, int] = {
    "Plock": 2,
    "Auto Plock": 1,
    "Pack": 3,
    "Auto Pack": 1,
    "KM": 1,
    "Decating": 1,
    "Rework": 1,
    "In/Ut": 1,
    "Rep": 1,
}


def _default_day(today: datetime.date | None = None) -> datetime.date:
    base = today or datetime.date.today()
    return base + datetime.timedelta(days=1)


def _validate_plan(repository: SqlPlanningRepository, plan) -> Tuple[List[str], List[str]]:
    policy = repository.load_policy()
    report = validate_day_plan(
        plan.assignments,
        needs=DEMO_NEEDS,
        capacities=positional_capacities(policy),
    )
    errors = [issue["message"] for issue in report["issues"]]
    warnings = [warning["message"] for warning in report["warnings"]]
    return errors, warnings


def run_workflow(day: datetime.date, actor: str, shift: str | None) -> None:
    ensure_default_policy(SessionLocal)
    repository = SqlPlanningRepository(SessionLocal)

    roster = repository.list_employees(only_active=True)
    if shift:
        roster = [employee for employee in roster if employee.get("shift") == shift]
    if not roster:
        raise SystemExit("No active employees found. Run scripts/seed_employees.py first.")
    selected = [employee["id"] for employee in roster]
    names = {employee["id"]: employee["name"] for employee in roster}
    print(f"[workflow] Selected {len(selected)} employees.")

    save_station_needs(repository, day, DEMO_NEEDS)
    summary, plan = distribute_for_day(repository, day, selected, "Team lead", actor=actor)
    print(
        f"[workflow] Assigned {summary['assigned']} of {summary['selected']} employees "
        f"({summary['unassigned_count']} unassigned)."
    )
    for warning in summary.get("warnings") or []:
        print(f"[workflow][warning] {warning}")

    unassigned = plan.unassigned()
    if unassigned and plan.assignments.get("Pack") is not None:
        policy = repository.load_policy()
        reconciler = OverrideReconciler(
            plan,
            RotationHistoryTracker(repository),
            capacities=positional_capacities(policy),
        )
        outcome = reconciler.move(unassigned[0], "unassigned", "Pack")
        if isinstance(outcome, MoveProposal):
            print(f"[workflow] {outcome.message} Confirming.")
            reconciler.confirm_move(outcome)
        print(f"[workflow] Moved {names.get(unassigned[0], unassigned[0])} onto Pack.")

    errors, warnings = _validate_plan(repository, plan)
    for warning in warnings:
        print(f"[workflow][validation-warning] {warning}")
    if errors:
        for err in errors:
            print(f"[workflow][validation-error] {err}")
        raise SystemExit(1)

    result = commit_day_plan(repository, plan, actor=actor)
    print(f"[workflow] Saved {result['saved']} assignments ({result['skipped']} skipped).")

    reloaded = load_day_plan(repository, day)
    for station, employee_ids in reloaded.assignments.items():
        labels = [names.get(employee_id, "-") if employee_id else "-" for employee_id in employee_ids]
        print(f"[workflow]   {station}: {', '.join(labels)}")
    stats = repository.day_summary(day)
    print(
        f"[workflow] Active employees: {stats['active_employees']} | "
        f"Assignments: {stats['assignments']} | Stations with needs: {stats['stations_with_needs']}"
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Run an end-to-end smoke test that stores demo needs, distributes the active "
            "roster, applies a manual move, validates and saves the day."
        )
    )
    parser.add_argument("--day", help="ISO date (YYYY-MM-DD) to plan. Defaults to tomorrow.")
    parser.add_argument("--shift", help="Only plan employees on this shift.")
    parser.add_argument("--actor", default="workflow_smoke", help="Audit trail actor name.")
    return parser.parse_args()


def main() -> None:
    init_database()
    args = parse_args()
    if args.day:
        try:
            day = datetime.date.fromisoformat(args.day)
        except ValueError as exc:
            raise SystemExit(f"Invalid --day value: {exc}") from exc
    else:
        day = _default_day()
    print(f"[workflow] Target day: {day.isoformat()}")
    run_workflow(day, actor=args.actor, shift=args.shift)


if __name__ == "__main__":
    main()
