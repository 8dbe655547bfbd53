# Overview: Domain error taxonomy shared by services and routes.

"""
Every business rule violation raised by a service derives from DomainError.
Routes map `http_status` straight onto the response; nothing here knows
about Flask.

    ValidationError    400  missing/malformed field (never mutates state)
    PermissionDenied   403  actor lacks a capability (terminal, not retryable)
    NotFound           404  lot/tag/job/request/... does not exist
    InsufficientStock  409  not enough quantity (retryable)
    DuplicateTag       409  tag number already registered
    Conflict           409  illegal state transition or sync collision

OfflineDeferred is deliberately not an exception: the operation was accepted
and will run once connectivity returns.
"""

from __future__ import annotations

from dataclasses import dataclass


class DomainError(ValueError):
    http_status = 400
    retryable = False

    def to_dict(self) -> dict:
        return {"error": str(self), "type": type(self).__name__, "retryable": self.retryable}


class ValidationError(DomainError):
    """400-level input problem."""

    http_status = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class PermissionDenied(DomainError):
    http_status = 403

    def __init__(self, message: str, capability: str | None = None):
        super().__init__(message)
        self.capability = capability

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.capability:
            body["required_capability"] = self.capability
        return body


class NotFound(DomainError):
    http_status = 404

    def __init__(self, entity: str, key):
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key


class InsufficientStock(DomainError):
    http_status = 409
    retryable = True


class DuplicateTag(DomainError):
    http_status = 409


class Conflict(DomainError):
    """409-level business rule conflict (state machine, sync replay)."""

    http_status = 409


@dataclass(frozen=True)
class OfflineDeferred:
    """Operation accepted while disconnected; replayed by the sync queue."""

    offline_id: str
    queued_position: int

    def to_dict(self) -> dict:
        return {
            "deferred": True,
            "offline_id": self.offline_id,
            "queued_position": self.queued_position,
        }
