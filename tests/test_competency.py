from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from competency import CompetencyRegistry  # noqa: E402
from errors import ValidationError  # noqa: E402
from fakes import InMemoryRepository  # noqa: E402
from needs import NeedsSpecification, save_station_needs  # noqa: E402


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


def test_bulk_load_returns_every_requested_id(repo) -> None:
    anna = repo.add_employee("Anna", {"Pack", "Plock"})
    bare = repo.add_employee("Bare")
    registry = CompetencyRegistry(repo)

    loaded = registry.load([anna, bare, "missing"])

    assert loaded[anna] == frozenset({"Pack", "Plock"})
    assert loaded[bare] == frozenset()
    assert loaded["missing"] == frozenset()


def test_load_is_cached_after_first_fetch(repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})
    registry = CompetencyRegistry(repo)

    registry.load([anna])
    registry.qualified_stations(anna)
    registry.is_qualified(anna, "pack")

    assert repo.calls["load_competencies"] == 1
    registry.invalidate()
    registry.load([anna])
    assert repo.calls["load_competencies"] == 2


def test_grant_and_revoke_are_idempotent(repo) -> None:
    anna = repo.add_employee("Anna")
    registry = CompetencyRegistry(repo)
    registry.load([anna])

    assert registry.grant(anna, "km") is True
    assert registry.grant(anna, "KM") is False
    assert registry.is_qualified(anna, "KM") is True
    assert registry.revoke(anna, "KM") is True
    assert registry.revoke(anna, "KM") is False
    assert registry.qualified_stations(anna) == frozenset()


def test_grant_rejects_unknown_station_and_blank_id(repo) -> None:
    registry = CompetencyRegistry(repo)

    with pytest.raises(ValidationError):
        registry.grant("someone", "Forklift")
    with pytest.raises(ValidationError):
        registry.grant("  ", "Pack")
    assert repo.calls["grant_competency"] == 0


def test_unknown_station_is_never_qualified(repo) -> None:
    anna = repo.add_employee("Anna", {"Pack"})

    assert CompetencyRegistry(repo).is_qualified(anna, "Loading dock") is False


def test_needs_default_to_zero_and_ignore_manual_station() -> None:
    needs = NeedsSpecification({"Pack": "3", "FL": 2, "KM": None, "Rep": -1})

    assert needs.need_for("Pack") == 3
    assert needs.need_for("FL") == 0
    assert needs.need_for("KM") == 0
    assert needs.need_for("Rep") == 0
    assert needs.need_for("Plock") == 0
    assert needs.stations_with_needs() == ["Pack"]
    assert needs.total() == 3


def test_save_station_needs_writes_whole_catalog(repo) -> None:
    day = datetime.date(2024, 5, 10)

    stored = save_station_needs(repo, day, {"Pack": 2, "Rework": 1, "FL": 1})

    assert set(repo.needs[day]) == {
        "Plock", "Auto Plock", "Pack", "Auto Pack", "KM", "Decating", "Rework", "In/Ut", "Rep", "FL",
    }
    assert repo.needs[day]["FL"] == 0
    assert stored.need_for("Rework") == 1
    assert stored.need_for("Decating") == 0
