# Overview: Delegation (shadow role) records and resolution.

"""
A delegator names an ordered list of delegates (priority 1..n).

Priority is a presentation convention: the primary is the active delegate
with the lowest priority number, the rest are listed as fallbacks. No
availability check is performed; any active delegate may act.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Delegation, DelegateAssignment, User
from ..errors import NotFound, PermissionDenied, ValidationError
from ..time_utils import utcnow
from . import change_bus
from .activity_service import ACTION_UPDATE, log_activity
from .concurrency import run_with_retry
from .permission_service import ActingIdentity, authorize, get_user


def _get_delegation(delegator_id: int) -> Delegation | None:
    return db.session.query(Delegation).filter_by(delegator_id=delegator_id).first()


def _is_in_window(delegation: Delegation, now=None) -> bool:
    now = now or utcnow()
    if delegation.start_date and now < delegation.start_date:
        return False
    if delegation.end_date and now > delegation.end_date:
        return False
    return True


def _active_delegates(delegation: Delegation | None) -> list[DelegateAssignment]:
    if not delegation or not delegation.active or not _is_in_window(delegation):
        return []
    return sorted(
        (d for d in delegation.delegates if d.active and d.user is not None and d.user.is_active),
        key=lambda d: d.priority,
    )


def get_delegation(delegator_id: int) -> Delegation:
    delegation = _get_delegation(delegator_id)
    if not delegation:
        raise NotFound("Delegation", delegator_id)
    return delegation


def set_delegation(
    *,
    delegator_id: int,
    delegate_ids: list[int],
    actor_id: int,
    start_date=None,
    end_date=None,
) -> Delegation:
    """
    Replace a delegator's delegates. Order of `delegate_ids` is priority order.
    """
    def _op():
        identity = authorize(actor_id, "manageUsers")
        delegator = get_user(delegator_id)

        if not delegate_ids:
            raise ValidationError("At least one delegate is required", field="delegate_ids")
        if len(set(delegate_ids)) != len(delegate_ids):
            raise ValidationError("Delegates must be unique", field="delegate_ids")
        if delegator.id in delegate_ids:
            raise ValidationError("A user cannot delegate to themselves", field="delegate_ids")
        if start_date and end_date and end_date < start_date:
            raise ValidationError("end_date must be after start_date", field="end_date")

        delegates = [get_user(uid) for uid in delegate_ids]

        delegation = _get_delegation(delegator.id)
        if delegation is None:
            delegation = Delegation(delegator_id=delegator.id)
            db.session.add(delegation)
        else:
            delegation.delegates.clear()
            db.session.flush()

        delegation.active = True
        delegation.start_date = start_date
        delegation.end_date = end_date
        delegation.delegated_by_user_id = identity.actual.id
        for priority, user in enumerate(delegates, start=1):
            delegation.delegates.append(DelegateAssignment(user_id=user.id, priority=priority, active=True))
        db.session.flush()

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="DELEGATION",
            entity_id=delegation.id,
            entity_name=delegator.name,
            description=f"Delegation for {delegator.name} set to {', '.join(u.name for u in delegates)}",
            details={"delegate_ids": list(delegate_ids)},
        )
        change_bus.announce(
            change_bus.DELEGATIONS_UPDATED,
            entity_type="delegation",
            entity_id=delegation.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return delegation

    return run_with_retry(_op)


def set_delegate_active(*, delegator_id: int, delegate_user_id: int, active: bool, actor_id: int) -> Delegation:
    def _op():
        identity = authorize(actor_id, "manageUsers")
        delegation = get_delegation(delegator_id)

        assignment = next((d for d in delegation.delegates if d.user_id == delegate_user_id), None)
        if not assignment:
            raise NotFound("Delegate", delegate_user_id)
        assignment.active = bool(active)

        change_bus.announce(
            change_bus.DELEGATIONS_UPDATED,
            entity_type="delegation",
            entity_id=delegation.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return delegation

    return run_with_retry(_op)


def clear_delegation(*, delegator_id: int, actor_id: int) -> None:
    def _op():
        identity = authorize(actor_id, "manageUsers")
        delegation = get_delegation(delegator_id)
        delegation_id = delegation.id
        db.session.delete(delegation)

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="DELEGATION",
            entity_id=delegation_id,
            description=f"Delegation for user {delegator_id} cleared",
        )
        change_bus.announce(
            change_bus.DELEGATIONS_UPDATED,
            entity_type="delegation",
            entity_id=delegation_id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()

    return run_with_retry(_op)


def resolve_delegate(delegator_id: int) -> dict | None:
    """
    Primary delegate plus ordered fallbacks, or None when nobody is
    currently delegated.
    """
    delegates = _active_delegates(_get_delegation(delegator_id))
    if not delegates:
        return None
    return {
        "delegator_id": delegator_id,
        "primary": delegates[0].to_dict(),
        "fallbacks": [d.to_dict() for d in delegates[1:]],
    }


def acting_identity(actor: User, on_behalf_of: int) -> ActingIdentity:
    """
    Validate that `actor` is an active delegate of `on_behalf_of`.

    Any active delegate qualifies, whatever its priority.
    """
    delegator = get_user(on_behalf_of)
    delegates = _active_delegates(_get_delegation(delegator.id))
    if not any(d.user_id == actor.id for d in delegates):
        raise PermissionDenied(f"{actor.name} is not an active delegate of {delegator.name}")
    return ActingIdentity(actual=actor, displayed=delegator)


def delegations_for_delegate(user_id: int) -> list[Delegation]:
    """Delegations in which `user_id` is currently an active delegate."""
    rows = (
        db.session.query(Delegation)
        .join(DelegateAssignment, DelegateAssignment.delegation_id == Delegation.id)
        .filter(DelegateAssignment.user_id == user_id, DelegateAssignment.active.is_(True))
        .order_by(Delegation.id)
        .all()
    )
    return [d for d in rows if any(a.user_id == user_id for a in _active_delegates(d))]
