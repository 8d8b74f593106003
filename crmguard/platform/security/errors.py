from __future__ import annotations

from typing import Any


class AuthorizationError(Exception):
    """Base authorization error for row policy enforcement failures."""


class PermissionDenied(AuthorizationError):
    """Raised when no row policy rule grants the requested operation."""

    def __init__(self, resource: str, operation: str) -> None:
        self.resource = resource
        self.operation = operation
        super().__init__(f"Permission denied: {operation} on resource '{resource}'")


class ResolutionFailure(AuthorizationError):
    """Raised by resolvers when a principal identity cannot be resolved.

    Policy evaluation converts this into a deny; it never reaches callers of the
    evaluator.
    """

    def __init__(self, principal: Any, reason: str) -> None:
        self.principal = principal
        self.reason = reason
        super().__init__(f"Cannot resolve principal {principal!r}: {reason}")


class InvariantViolation(Exception):
    def __init__(self, invariant: str, message: str) -> None:
        self.invariant = invariant
        self.message = message
        super().__init__(f"Invariant '{invariant}' violated: {message}")


class RecordingFailure(Exception):
    def __init__(self, kind: str, entity_type: str, reason: str) -> None:
        self.kind = kind
        self.entity_type = entity_type
        self.reason = reason
        super().__init__(f"Failed to record {kind} entry for '{entity_type}': {reason}")


class RecordNotFoundError(LookupError):
    def __init__(self, resource: str, row_id: Any) -> None:
        self.resource = resource
        self.row_id = row_id
        super().__init__(f"{resource} not found")
