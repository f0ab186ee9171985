"""
Domain errors.

Every error is an ``HTTPException`` so services can raise them directly and the
API layer needs no translation table; callers outside HTTP match on the class.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class ExtractionUnavailable(HTTPException):
    """The OCR step itself failed; distinct from "ran but found nothing"."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Could not read receipt", "reason": reason},
        )
        self.reason = reason


class TransitionError(HTTPException):
    pass


class PolicyViolation(TransitionError):
    """A precondition failed because of incomplete or invalid data. Recoverable."""

    def __init__(self, requirements: list[str], *, message: str | None = None) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": message or "Expense does not meet the requirements for this action.",
                "requirements": list(requirements),
            },
        )
        self.requirements = list(requirements)


class TransitionForbidden(TransitionError):
    def __init__(self, message: str) -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=message)


class IllegalTransition(TransitionError):
    def __init__(self, *, from_status: Any, event: Any) -> None:
        from_value = getattr(from_status, "value", from_status)
        event_value = getattr(event, "value", event)
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {event_value} an expense in status {from_value}",
        )
        self.from_status = from_status
        self.event = event


class StaleState(TransitionError):
    def __init__(self, *, expected: Any, actual: Any | None = None) -> None:
        expected_value = getattr(expected, "value", expected)
        detail: dict[str, Any] = {
            "message": "Record changed since it was read; reload and retry.",
            "expected_status": expected_value,
        }
        if actual is not None:
            detail["actual_status"] = getattr(actual, "value", actual)
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ReconciliationError(HTTPException):
    def __init__(self, message: str, *, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(status_code=status_code, detail=message)


class ReconciliationConflict(ReconciliationError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)
