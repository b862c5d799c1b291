# Overview: Domain error taxonomy shared by services and routes.

"""
Operation errors.

Services raise these; routes translate them into JSON responses carrying a
machine-readable kind and a human-readable message. Anything that is not an
OperationError is unexpected and surfaces as a 500.
"""

from __future__ import annotations


class OperationError(Exception):
    """Base class for expected, user-visible operation failures."""

    kind = "OperationError"
    status_code = 400

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": self.kind}
        if self.details:
            payload["details"] = self.details
        return payload


class UnauthorizedError(OperationError):
    """No authenticated identity."""
    kind = "Unauthorized"
    status_code = 401


class ForbiddenError(OperationError):
    """Identity present but not a member of the organization, or role too low."""
    kind = "Forbidden"
    status_code = 403


class InvalidInputError(OperationError):
    """Schema or shape violation in the request."""
    kind = "InvalidInput"
    status_code = 400


class NotFoundError(OperationError):
    kind = "NotFound"
    status_code = 404


class ConflictError(OperationError):
    """Temporal exclusion violated (double booking)."""
    kind = "Conflict"
    status_code = 409


class InvalidStateError(OperationError):
    """Operation not permitted in the entity's current status."""
    kind = "InvalidState"
    status_code = 409


class ImmutableError(InvalidStateError):
    """Entity is in a terminal status and can no longer be mutated."""
    kind = "Immutable"


class InsufficientCreditError(OperationError):
    kind = "InsufficientCredit"
    status_code = 400


class DependencyFailureError(OperationError):
    """An external collaborator (sequence generator, storage write) failed."""
    kind = "DependencyFailure"
    status_code = 503
