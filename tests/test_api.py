from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from starlette.testclient import TestClient

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import api  # noqa: E402
from fakes import InMemoryRepository  # noqa: E402

DAY = "2024-05-10"


@pytest.fixture()
def repo():
    repository = InMemoryRepository()
    prev = dict(api.app.dependency_overrides)
    api.app.dependency_overrides[api.get_repository] = lambda: repository
    api._PLANS.clear()
    yield repository
    api._PLANS.clear()
    api.app.dependency_overrides.clear()
    api.app.dependency_overrides.update(prev)


@pytest.fixture()
def client(repo) -> TestClient:
    return TestClient(api.app)


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_bad_day_is_rejected(client) -> None:
    response = client.get("/api/v1/days/10-05-2024/needs")

    assert response.status_code == 400


def test_competency_endpoints(client, repo) -> None:
    anna = repo.add_employee("Anna")

    assert client.put(f"/api/v1/employees/{anna}/competencies/Pack").json()["created"] is True
    assert client.get(f"/api/v1/employees/{anna}/competencies").json()["stations"] == ["Pack"]
    assert client.delete(f"/api/v1/employees/{anna}/competencies/Pack").json()["removed"] is True

    response = client.put(f"/api/v1/employees/{anna}/competencies/Forklift")
    assert response.status_code == 400


def test_needs_round_trip(client, repo) -> None:
    response = client.put(f"/api/v1/days/{DAY}/needs", json={"needs": {"Pack": 2, "Dock": 1}})

    assert response.status_code == 200
    assert response.json()["needs"]["Pack"] == 2
    assert response.json()["ignored"] == ["Dock"]
    assert client.get(f"/api/v1/days/{DAY}/needs").json()["needs"]["Pack"] == 2


def test_distribute_move_and_save(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})
    erik = repo.add_employee("Erik", {"KM"})
    idle = repo.add_employee("Idle", {"Rep"})
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 1, "KM": 1}

    response = client.post(
        f"/api/v1/days/{DAY}/distribute",
        json={"selected": [anna, erik, idle], "manual_value": "Lead"},
    )
    body = response.json()
    assert response.status_code == 200
    assert body["plan"]["assignments"]["Pack"] == [anna]
    assert body["plan"]["manual_value"] == "Lead"
    assert body["summary"]["unassigned"] == [idle]

    moved = client.post(
        f"/api/v1/days/{DAY}/moves",
        json={"employee_id": idle, "from_station": "unassigned", "to_station": "Pack", "target_index": 0},
    ).json()
    assert moved["status"] == "applied"
    assert moved["displaced"] == anna
    assert moved["plan"]["unassigned"] == [anna]

    saved = client.post(f"/api/v1/days/{DAY}/save", json={"actor": "tests"}).json()
    assert saved["saved"] == 2
    stored = {(row["station"], row["employee_id"]) for row in repo.assignments[datetime.date(2024, 5, 10)]}
    assert stored == {("Pack", idle), ("KM", erik)}


def test_move_confirmation_flow(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack", "KM"})
    for offset in range(3):
        repo.add_history(anna, "KM", datetime.date.today() - datetime.timedelta(days=offset + 1))
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 1}
    client.post(f"/api/v1/days/{DAY}/distribute", json={"selected": [anna]})

    proposal = client.post(
        f"/api/v1/days/{DAY}/moves",
        json={"employee_id": anna, "from_station": "Pack", "to_station": "KM"},
    ).json()
    assert proposal["status"] == "confirm"
    assert proposal["plan"]["assignments"]["Pack"] == [anna]

    confirmed = client.post(f"/api/v1/days/{DAY}/moves/confirm", json=proposal["proposal"]).json()
    assert confirmed["status"] == "applied"
    assert confirmed["plan"]["assignments"]["KM"] == [anna]


def test_invalid_move_returns_400(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 1}
    client.post(f"/api/v1/days/{DAY}/distribute", json={"selected": [anna]})

    response = client.post(
        f"/api/v1/days/{DAY}/moves",
        json={"employee_id": anna, "from_station": "Pack", "to_station": "FL"},
    )

    assert response.status_code == 400


def test_save_failure_returns_500_with_detail(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 1}
    client.post(f"/api/v1/days/{DAY}/distribute", json={"selected": [anna]})
    repo.fail_on = "append_work_history"

    response = client.post(f"/api/v1/days/{DAY}/save")

    assert response.status_code == 500
    assert response.json()["detail"]["hint"] == "retry later"


def test_save_without_plan_is_404(client) -> None:
    assert client.post(f"/api/v1/days/{DAY}/save").status_code == 404


def test_clear_and_manual_value(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 1}
    client.post(f"/api/v1/days/{DAY}/distribute", json={"selected": [anna], "manual_value": "Lead"})

    cleared = client.post(f"/api/v1/days/{DAY}/clear").json()
    assert cleared["assignments"] == {"FL": ["Lead"]}
    assert cleared["unassigned"] == [anna]

    updated = client.put(f"/api/v1/days/{DAY}/manual", json={"value": "Night lead"}).json()
    assert updated["manual_value"] == "Night lead"


def test_validate_reports_understaffing(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 2}
    client.post(f"/api/v1/days/{DAY}/distribute", json={"selected": [anna]})

    report = client.get(f"/api/v1/days/{DAY}/validate").json()

    assert report["valid"] is True
    assert report["warnings"][0]["type"] == "understaffed"


def test_day_summary_counts_needs_and_saved_rows(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})
    repo.add_employee("Bo", active=False)
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 2, "KM": 1}
    client.post(f"/api/v1/days/{DAY}/distribute", json={"selected": [anna]})
    client.post(f"/api/v1/days/{DAY}/save")

    summary = client.get(f"/api/v1/days/{DAY}/summary").json()

    assert summary["total_employees"] == 2
    assert summary["active_employees"] == 1
    assert summary["assignments"] == 1
    assert summary["stations_with_needs"] == 2
    pack = next(item for item in summary["stations"] if item["station"] == "Pack")
    assert pack == {"station": "Pack", "needed": 2, "filled": 1}


def test_confirm_rejects_a_move_the_gate_never_held(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack", "KM"})
    repo.needs[datetime.date(2024, 5, 10)] = {"Pack": 1}
    client.post(f"/api/v1/days/{DAY}/distribute", json={"selected": [anna]})

    response = client.post(
        f"/api/v1/days/{DAY}/moves/confirm",
        json={
            "employee_id": anna,
            "from_station": "Pack",
            "to_station": "KM",
            "target_index": None,
            "visit_count": 9,
            "most_visited": "KM",
        },
    )

    assert response.status_code == 409
    plan = client.get(f"/api/v1/days/{DAY}/plan").json()
    assert plan["assignments"]["Pack"] == [anna]
    assert "KM" not in plan["assignments"]


def test_employee_history_lists_counts_and_recent_stations(client, repo) -> None:
    anna = repo.add_employee("Anna", {"Pack", "KM"})
    today = datetime.date.today()
    for offset, station in enumerate(["KM", "KM", "Pack", "KM", "Rep", "Pack"]):
        repo.add_history(anna, station, today - datetime.timedelta(days=offset + 1))
    repo.add_history(anna, "Plock", today - datetime.timedelta(days=400))

    body = client.get(f"/api/v1/employees/{anna}/history").json()

    assert body["visit_counts"] == {"KM": 3, "Pack": 2, "Rep": 1}
    assert body["most_visited"] == "KM"
    assert body["most_visited_count"] == 3
    assert [item["station"] for item in body["recent"]] == ["KM", "KM", "Pack", "KM", "Rep"]
