from __future__ import annotations

from typing import Any, Dict


class PlanningError(Exception):
    """Base class for station planning failures."""


class ValidationError(PlanningError):
    """A record handed to a save or grant carried a malformed identifier."""


class InvalidMoveError(PlanningError):
    """A manual move referenced a station, slot or employee that is not there."""


class PersistenceError(PlanningError):
    """A write to the store failed. Carries message/detail/hint for display."""

    def __init__(self, message: str, *, detail: str = "", hint: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.hint = hint

    def describe(self) -> str:
        text = self.message
        if self.detail:
            text = f"{text} - {self.detail}"
        if self.hint:
            text = f"{text} ({self.hint})"
        return text

    def as_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "detail": self.detail, "hint": self.hint}
