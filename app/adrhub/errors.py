"""
Error taxonomy shared by services and blueprints.

Services raise these; the app factory registers one handler that renders them
as JSON. Audit and notification failures never surface here: they are logged
and suppressed where they happen.
"""

from __future__ import annotations

from typing import Any


class AdrHubError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class AuthenticationRequired(AdrHubError):
    status_code = 401
    code = "authentication_required"

    def __init__(self, message: str = "authentication required") -> None:
        super().__init__(message)


class AuthorizationDenied(AdrHubError):
    """
    Principal lacks the required role. The message never says which role was
    needed; `reason` is kept for logs only.
    """

    status_code = 403
    code = "authorization_denied"

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__("insufficient permissions")


class ValidationFailed(AdrHubError):
    status_code = 400
    code = "validation_failed"

    def __init__(self, message: str = "validation failed", field_errors: dict[str, str] | None = None) -> None:
        self.field_errors = field_errors or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        if self.field_errors:
            d["errors"] = dict(self.field_errors)
        return d


class NotFound(AdrHubError):
    """Missing, or outside the caller's scope. Both look the same to the caller."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class InvalidTransition(AdrHubError):
    status_code = 400
    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"cannot transition from {from_status} to {to_status}")

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["from"] = self.from_status
        d["to"] = self.to_status
        return d


class Conflict(AdrHubError):
    status_code = 409
    code = "conflict"
