# Overview: Capability resolution and actor authorization.

"""
Capability checks for service operations.

DESIGN PRINCIPLES:
- Fail closed: an unknown capability or inactive user is denied.
- Resolution order: explicit override -> permission level -> current role.
- Managers, supervisors and GMs may always create job orders.
- Delegated execution is checked against the delegator's capabilities
  while the audit trail keeps the delegate's identity.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import User
from ..errors import NotFound, PermissionDenied
from ..permissions import (
    ALWAYS_CREATE_ROLES,
    CAPABILITIES,
    DEFAULT_PERMISSIONS_BY_LEVEL,
    DEFAULT_PERMISSIONS_BY_ROLE,
)


@dataclass(frozen=True)
class ActingIdentity:
    """Who really acted (audit) and who third parties see as acting."""

    actual: User
    displayed: User

    @property
    def is_delegated(self) -> bool:
        return self.actual.id != self.displayed.id

    def to_dict(self) -> dict:
        return {
            "actual_user_id": self.actual.id,
            "actual_name": self.actual.name,
            "displayed_user_id": self.displayed.id,
            "displayed_name": self.displayed.name,
            "is_delegated": self.is_delegated,
        }


def get_user(user_id: int | None) -> User:
    if not user_id:
        raise PermissionDenied("Actor identity is required")
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFound("User", user_id)
    if not user.is_active:
        raise PermissionDenied(f"User {user_id} is inactive")
    return user


def has_capability(user: User, capability: str) -> bool:
    if capability not in CAPABILITIES:
        return False
    if not user.is_active:
        return False

    role = user.active_role
    if capability == "createJobOrder" and role in ALWAYS_CREATE_ROLES:
        return True

    overrides = user.permission_overrides or {}
    if capability in overrides:
        return bool(overrides[capability])

    level_defaults = DEFAULT_PERMISSIONS_BY_LEVEL.get(user.permission_level or "", {})
    if capability in level_defaults:
        return bool(level_defaults[capability])

    return bool(DEFAULT_PERMISSIONS_BY_ROLE.get(role, {}).get(capability, False))


def get_user_capabilities(user: User) -> dict[str, bool]:
    return {code: has_capability(user, code) for code in CAPABILITIES}


def require_capability(user: User, capability: str) -> None:
    if not has_capability(user, capability):
        raise PermissionDenied(
            f"{user.name} lacks the '{capability}' capability ({CAPABILITIES.get(capability, capability)})",
            capability=capability,
        )


def authorize(actor_id: int | None, capability: str | None = None, *, on_behalf_of: int | None = None) -> ActingIdentity:
    """
    Resolve the acting identity for an operation and check `capability`.

    With `on_behalf_of`, the actor must be an active delegate of that user
    and the capability is checked against the delegator.
    """
    actor = get_user(actor_id)

    if on_behalf_of and on_behalf_of != actor.id:
        from .delegation_service import acting_identity
        identity = acting_identity(actor, on_behalf_of)
    else:
        identity = ActingIdentity(actual=actor, displayed=actor)

    if capability:
        require_capability(identity.displayed, capability)
    return identity
