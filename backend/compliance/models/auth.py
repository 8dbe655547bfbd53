from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Region(db.Model):
    """A region/branch. Regions can hold sticker stock just like inspectors."""
    __tablename__ = "regions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Region id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Staff or client account.

    roles is a list (a user may be inspector and trainer at once);
    current_role selects which role's defaults apply when resolving
    capabilities. permission_overrides maps capability code -> bool.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    employee_id = db.Column(db.String(64), nullable=True)

    roles = db.Column(db.JSON, nullable=False, default=list)
    current_role = db.Column(db.String(32), nullable=True)
    permission_level = db.Column(db.String(16), nullable=True)
    permission_overrides = db.Column(db.JSON, nullable=False, default=dict)

    region_id = db.Column(db.Integer, db.ForeignKey("regions.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    region = db.relationship("Region", backref=db.backref("users", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.name!r} roles={self.roles!r}>"

    def has_role(self, role: str) -> bool:
        return role in (self.roles or [])

    @property
    def active_role(self) -> str | None:
        if self.current_role:
            return self.current_role
        return (self.roles or [None])[0]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "employee_id": self.employee_id,
            "roles": list(self.roles or []),
            "current_role": self.active_role,
            "permission_level": self.permission_level,
            "permission_overrides": dict(self.permission_overrides or {}),
            "region_id": self.region_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Client(db.Model):
    """Customer organisation or individual that job orders are billed to."""
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.Text, nullable=True)
    business_type = db.Column(db.String(32), nullable=True)

    # Portal login for notifications (optional)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    region_id = db.Column(db.Integer, db.ForeignKey("regions.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "business_type": self.business_type,
            "user_id": self.user_id,
            "region_id": self.region_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Delegation(db.Model):
    """
    Shadow-role record: delegates may act on the delegator's behalf.

    One record per delegator. Delegates are ordered by priority
    (1 = primary). The priority order is a presentation convention only;
    nothing checks whether a higher-priority delegate is actually busy.
    """
    __tablename__ = "delegations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delegator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)
    delegated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    delegator = db.relationship("User", foreign_keys=[delegator_id])
    delegates = db.relationship(
        "DelegateAssignment",
        backref="delegation",
        order_by="DelegateAssignment.priority",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delegator_id": self.delegator_id,
            "delegated_by_user_id": self.delegated_by_user_id,
            "active": self.active,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "delegates": [d.to_dict() for d in self.delegates],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DelegateAssignment(db.Model):
    __tablename__ = "delegate_assignments"
    __table_args__ = (
        # Priorities form a total order per delegator
        db.UniqueConstraint("delegation_id", "priority", name="uq_delegate_priority"),
        db.UniqueConstraint("delegation_id", "user_id", name="uq_delegate_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delegation_id = db.Column(db.Integer, db.ForeignKey("delegations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    priority = db.Column(db.Integer, nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True)

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "priority": self.priority,
            "active": self.active,
        }
