from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from policy import _normalize_policy, confirm_min_visits, history_window_months  # noqa: E402


@pytest.mark.parametrize(
    "stored, window, threshold",
    [
        ({"history_window_months": 0, "confirm_min_visits": 0}, 1, 1),
        ({"history_window_months": "0", "confirm_min_visits": -2}, 1, 1),
        ({"history_window_months": None, "confirm_min_visits": ""}, 6, 3),
        ({"history_window_months": "abc", "confirm_min_visits": "x"}, 6, 3),
        ({"history_window_months": 3, "confirm_min_visits": 5}, 3, 5),
    ],
)
def test_rotation_values_clamp_to_one_and_default_when_missing(stored, window, threshold) -> None:
    policy = _normalize_policy({"rotation": stored})

    assert history_window_months(policy) == window
    assert confirm_min_visits(policy) == threshold


def test_missing_rotation_section_uses_baseline() -> None:
    policy = _normalize_policy({})

    assert history_window_months(policy) == 6
    assert confirm_min_visits(policy) == 3
