"""
Failure categories raised by the scheduling engine.

Every error carries a stable ``code`` and a structured ``detail()`` payload so
the HTTP layer can decide how much to disclose. None of them is recovered
inside the engine; the session is rolled back and the error propagates.
"""
from typing import Any, Dict, Optional, Sequence


class ReservationError(Exception):
    """Base class for all engine failures."""

    code = "RESERVATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationFailed(ReservationError):
    """
    Restriction-rule violations and/or time conflicts.

    Parameters
    ----------
    violations : Sequence
        ``Violation`` values from the restriction evaluator (or admission
        input checks).
    conflicts : Sequence
        ``ConflictSummary`` values from the conflict detector.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, violations: Sequence = (), conflicts: Sequence = ()):
        self.violations = tuple(violations)
        self.conflicts = tuple(conflicts)
        parts = list(dict.fromkeys(v.message for v in self.violations))
        if self.conflicts:
            parts.append(
                "Conflicts with existing reservations: "
                + ", ".join(c.describe() for c in self.conflicts)
            )
        super().__init__("; ".join(parts) or "Reservation is not admissible")

    @property
    def codes(self):
        return [v.code for v in self.violations]

    def detail(self) -> Dict[str, Any]:
        data = super().detail()
        data["violations"] = [v.as_dict() for v in self.violations]
        data["conflicts"] = [c.as_dict() for c in self.conflicts]
        return data


class LimitExceeded(ReservationError):
    """A recurring request expands to more instances than allowed."""

    code = "TOO_MANY_INSTANCES"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Reservations were not created: the request exceeds {limit} instances, "
            "narrow the repetition interval and try again"
        )

    def detail(self) -> Dict[str, Any]:
        data = super().detail()
        data["limit"] = self.limit
        return data


class NotFound(ReservationError):
    """A referenced room, purpose or reservation does not exist."""

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource.capitalize()} {resource_id} not found",
            code=f"{resource.upper()}_NOT_FOUND",
        )


class InvalidTransition(ReservationError):
    """A workflow guard refused the transition; carries the current status."""

    def __init__(self, message: str, current_status: Any, code: str = "NOT_PENDING"):
        self.current_status = getattr(current_status, "value", current_status)
        super().__init__(message, code=code)

    def detail(self) -> Dict[str, Any]:
        data = super().detail()
        data["current_status"] = self.current_status
        return data


class PermissionDenied(ReservationError):
    """The acting principal is neither owner/room-responsible nor admin."""

    code = "PERMISSION_DENIED"
