# Overview: Registry of individually numbered tags.

"""
LIFECYCLE (monotonic):

    AVAILABLE -> ALLOCATED -> USED
    AVAILABLE | ALLOCATED | USED -> REMOVED   (terminal)

No quantity math: one row per physical tag.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import JobOrder, Tag
from ..models.jobs import JOB_PAID, JOB_REJECTED
from ..models.tags import (
    TAG_STATUS_ALLOCATED,
    TAG_STATUS_AVAILABLE,
    TAG_STATUS_REMOVED,
    TAG_STATUS_USED,
)
from ..errors import Conflict, DuplicateTag, NotFound, ValidationError
from ..time_utils import utcnow
from ..validation import non_blank
from . import change_bus
from .activity_service import ACTION_ASSIGN, ACTION_CREATE, ACTION_UPDATE, log_activity
from .concurrency import lock_for_update, run_with_retry
from .permission_service import authorize


def _normalize(tag_number) -> str:
    return non_blank(tag_number, "tag_number")


def find_by_number(tag_number: str) -> Tag:
    number = _normalize(tag_number)
    tag = db.session.query(Tag).filter_by(tag_number=number).first()
    if not tag:
        raise NotFound("Tag", number)
    return tag


def list_tags(*, status: str | None = None, job_order_id: int | None = None) -> list[Tag]:
    query = db.session.query(Tag)
    if status:
        query = query.filter(Tag.status == status)
    if job_order_id is not None:
        query = query.filter(Tag.allocated_to_job_order_id == job_order_id)
    return query.order_by(Tag.id.asc()).all()


def _get_for_update(tag_number: str) -> Tag:
    number = _normalize(tag_number)
    tag = lock_for_update(db.session.query(Tag).filter_by(tag_number=number)).first()
    if not tag:
        raise NotFound("Tag", number)
    return tag


def _announce(tag: Tag, actor_id: int | None) -> None:
    change_bus.announce(change_bus.TAGS_UPDATED, entity_type="tag", entity_id=tag.id, actor_user_id=actor_id)


def create_tag(tag_number: str, *, actor_id: int, notes: str | None = None) -> Tag:
    def _op():
        identity = authorize(actor_id, "manageStickers")
        number = _normalize(tag_number)

        if db.session.query(Tag.id).filter_by(tag_number=number).first():
            raise DuplicateTag(f"Tag {number} already exists")

        tag = Tag(
            tag_number=number,
            status=TAG_STATUS_AVAILABLE,
            notes=notes,
            created_by_user_id=identity.actual.id,
        )
        try:
            with db.session.begin_nested():
                db.session.add(tag)
        except IntegrityError:
            raise DuplicateTag(f"Tag {number} already exists")

        log_activity(
            actor=identity.actual,
            action_type=ACTION_CREATE,
            entity_type="TAG",
            entity_id=tag.id,
            entity_name=number,
            description=f"Registered tag {number}",
        )
        _announce(tag, identity.actual.id)
        db.session.commit()
        return tag

    return run_with_retry(_op)


def _allocate_tag_inner(tag: Tag, job: JobOrder, *, actor_id: int | None) -> Tag:
    """AVAILABLE -> ALLOCATED onto `job`. No commit."""
    if tag.status != TAG_STATUS_AVAILABLE:
        raise Conflict(f"Tag {tag.tag_number} is {tag.status}; only AVAILABLE tags can be allocated")
    if job.status in (JOB_REJECTED, JOB_PAID):
        raise Conflict(f"Job order {job.job_number} is {job.status}; tags cannot be allocated")

    current = (
        db.session.query(Tag.id)
        .filter(Tag.allocated_to_job_order_id == job.id, Tag.status != TAG_STATUS_REMOVED)
        .first()
    )
    if current:
        raise Conflict(f"Job order {job.job_number} already has a tag")

    tag.status = TAG_STATUS_ALLOCATED
    tag.allocated_to_job_order_id = job.id
    tag.allocated_at = utcnow()
    tag.allocated_by_user_id = actor_id
    _announce(tag, actor_id)
    return tag


def allocate_tag(tag_number: str, job_order_id: int, *, actor_id: int) -> Tag:
    def _op():
        identity = authorize(actor_id)
        tag = _get_for_update(tag_number)
        job = db.session.query(JobOrder).filter_by(id=job_order_id).first()
        if not job:
            raise NotFound("Job order", job_order_id)

        _allocate_tag_inner(tag, job, actor_id=identity.actual.id)
        log_activity(
            actor=identity.actual,
            action_type=ACTION_ASSIGN,
            entity_type="TAG",
            entity_id=tag.id,
            entity_name=tag.tag_number,
            description=f"Tag {tag.tag_number} allocated to job order {job.job_number}",
        )
        change_bus.announce(
            change_bus.JOB_ORDERS_UPDATED,
            entity_type="job_order",
            entity_id=job.id,
            actor_user_id=identity.actual.id,
        )
        db.session.commit()
        return tag

    return run_with_retry(_op)


def mark_tag_used(tag_number: str, *, actor_id: int) -> Tag:
    def _op():
        identity = authorize(actor_id)
        tag = _get_for_update(tag_number)
        if tag.status != TAG_STATUS_ALLOCATED:
            raise Conflict(f"Tag {tag.tag_number} is {tag.status}; only ALLOCATED tags can be marked used")
        job = db.session.query(JobOrder).filter_by(id=tag.allocated_to_job_order_id).first()
        if job is not None and job.status == JOB_REJECTED:
            raise Conflict(
                f"Job order {job.job_number} was rejected; report tag {tag.tag_number} removed instead"
            )

        tag.status = TAG_STATUS_USED
        tag.used_at = utcnow()

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="TAG",
            entity_id=tag.id,
            entity_name=tag.tag_number,
            description=f"Tag {tag.tag_number} marked used",
        )
        _announce(tag, identity.actual.id)
        db.session.commit()
        return tag

    return run_with_retry(_op)


def mark_tag_removed(tag_number: str, *, actor_id: int, notes: str | None = None) -> Tag:
    """Irreversible. Accepted from any state except REMOVED."""
    def _op():
        identity = authorize(actor_id)
        tag = _get_for_update(tag_number)
        if tag.status == TAG_STATUS_REMOVED:
            raise Conflict(f"Tag {tag.tag_number} is already removed")
        if tag.status not in (TAG_STATUS_AVAILABLE, TAG_STATUS_ALLOCATED, TAG_STATUS_USED):
            raise ValidationError(f"Tag {tag.tag_number} has unknown status {tag.status}")

        now = utcnow()
        tag.status = TAG_STATUS_REMOVED
        tag.removed_at = now
        tag.removal_reported_at = now
        tag.removed_by_user_id = identity.actual.id
        if notes:
            tag.notes = notes

        log_activity(
            actor=identity.actual,
            action_type=ACTION_UPDATE,
            entity_type="TAG",
            entity_id=tag.id,
            entity_name=tag.tag_number,
            description=f"Tag {tag.tag_number} reported removed",
            severity="high",
        )
        _announce(tag, identity.actual.id)
        db.session.commit()
        return tag

    return run_with_retry(_op)
