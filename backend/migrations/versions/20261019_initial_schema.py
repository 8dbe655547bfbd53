"""Initial compliance schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    op.create_table(
        "regions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_regions_code", "regions", ["code"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("employee_id", sa.String(64), nullable=True),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("current_role", sa.String(32), nullable=True),
        sa.Column("permission_level", sa.String(16), nullable=True),
        sa.Column("permission_overrides", sa.JSON(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_email", ["email"], unique=True)
        batch_op.create_index("ix_users_region_id", ["region_id"], unique=False)

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("business_type", sa.String(32), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("region_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("clients", schema=None) as batch_op:
        batch_op.create_index("ix_clients_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_clients_region_id", ["region_id"], unique=False)

    op.create_table(
        "delegations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("delegator_id", sa.Integer(), nullable=False),
        sa.Column("delegated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["delegator_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["delegated_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_delegations_delegator_id", "delegations", ["delegator_id"], unique=True)

    op.create_table(
        "delegate_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("delegation_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["delegation_id"], ["delegations.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("delegation_id", "priority", name="uq_delegate_priority"),
        sa.UniqueConstraint("delegation_id", "user_id", name="uq_delegate_user"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("delegate_assignments", schema=None) as batch_op:
        batch_op.create_index("ix_delegate_assignments_delegation_id", ["delegation_id"], unique=False)
        batch_op.create_index("ix_delegate_assignments_user_id", ["user_id"], unique=False)

    op.create_table(
        "sticker_lots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lot_number", sa.String(64), nullable=False),
        sa.Column("size", sa.String(16), nullable=False),
        sa.Column("total_qty", sa.Integer(), nullable=False),
        sa.Column("issued_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("available_qty", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("start_sequence", sa.Integer(), nullable=False),
        sa.Column("end_sequence", sa.Integer(), nullable=False),
        sa.Column("current_sequence", sa.Integer(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("available_qty >= 0", name="ck_lots_available_non_negative"),
        sa.CheckConstraint("available_qty = total_qty - issued_qty", name="ck_lots_conservation"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sticker_lots", schema=None) as batch_op:
        batch_op.create_index("ix_sticker_lots_lot_number", ["lot_number"], unique=True)
        batch_op.create_index("ix_sticker_lots_status", ["status"], unique=False)
        batch_op.create_index("ix_lots_size_status", ["size", "status"], unique=False)

    op.create_table(
        "stock_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=True),
        sa.Column("requester_name", sa.String(255), nullable=True),
        sa.Column("requester_type", sa.String(16), nullable=False, server_default="INSPECTOR"),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("size", sa.String(16), nullable=True),
        sa.Column("lot_number_preference", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fulfilled_lot_id", sa.Integer(), nullable=True),
        sa.Column("rejected_by_user_id", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["fulfilled_lot_id"], ["sticker_lots.id"]),
        sa.ForeignKeyConstraint(["rejected_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_requests", schema=None) as batch_op:
        batch_op.create_index("ix_stock_requests_requester_id", ["requester_id"], unique=False)
        batch_op.create_index("ix_stock_requests_status", ["status"], unique=False)

    op.create_table(
        "stock_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("from_holder_type", sa.String(16), nullable=False),
        sa.Column("from_holder_id", sa.Integer(), nullable=False),
        sa.Column("to_holder_type", sa.String(16), nullable=False),
        sa.Column("to_holder_id", sa.Integer(), nullable=False),
        sa.Column("lot_number", sa.String(64), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="COMPLETED"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("transferred_by_user_id", sa.Integer(), nullable=True),
        _timestamp("transferred_at"),
        sa.ForeignKeyConstraint(["transferred_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_transfers_lot_number", "stock_transfers", ["lot_number"], unique=False)

    op.create_table(
        "stock_holdings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lot_id", sa.Integer(), nullable=False),
        sa.Column("lot_number", sa.String(64), nullable=False),
        sa.Column("size", sa.String(16), nullable=False),
        sa.Column("holder_type", sa.String(16), nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("holder_name", sa.String(255), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("sequence_numbers", sa.JSON(), nullable=False),
        _timestamp("issued_at"),
        sa.Column("issued_by_user_id", sa.Integer(), nullable=True),
        sa.Column("source_request_id", sa.Integer(), nullable=True),
        sa.Column("source_transfer_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["lot_id"], ["sticker_lots.id"]),
        sa.ForeignKeyConstraint(["issued_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["source_request_id"], ["stock_requests.id"]),
        sa.ForeignKeyConstraint(["source_transfer_id"], ["stock_transfers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_holdings", schema=None) as batch_op:
        batch_op.create_index("ix_stock_holdings_lot_id", ["lot_id"], unique=False)
        batch_op.create_index("ix_stock_holdings_lot_number", ["lot_number"], unique=False)
        batch_op.create_index("ix_holdings_holder", ["holder_type", "holder_id"], unique=False)
        batch_op.create_index("ix_holdings_lot_holder", ["lot_id", "holder_type", "holder_id"], unique=False)

    op.create_table(
        "job_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_number", sa.String(32), nullable=False),
        sa.Column("offline_id", sa.String(64), nullable=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("service_types", sa.JSON(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("priority", sa.String(16), nullable=False, server_default="Medium"),
        sa.Column("region_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="AWAITING_JOB_APPROVAL"),
        sa.Column("assigned_to_user_id", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_status", sa.String(16), nullable=True),
        sa.Column("report_data", sa.JSON(), nullable=True),
        sa.Column("report_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("report_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revision_comments", sa.Text(), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by_user_id", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"]),
        sa.ForeignKeyConstraint(["assigned_to_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["rejected_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("offline_id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("job_orders", schema=None) as batch_op:
        batch_op.create_index("ix_job_orders_job_number", ["job_number"], unique=True)
        batch_op.create_index("ix_job_orders_client_id", ["client_id"], unique=False)
        batch_op.create_index("ix_job_orders_region_id", ["region_id"], unique=False)
        batch_op.create_index("ix_job_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_job_orders_assigned_to_user_id", ["assigned_to_user_id"], unique=False)
        batch_op.create_index("ix_job_orders_status_assignee", ["status", "assigned_to_user_id"], unique=False)

    op.create_table(
        "sticker_usages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stock_holding_id", sa.Integer(), nullable=False),
        sa.Column("lot_number", sa.String(64), nullable=False),
        sa.Column("sticker_number", sa.String(16), nullable=True),
        sa.Column("size", sa.String(16), nullable=True),
        sa.Column("job_order_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ALLOCATED"),
        sa.Column("photo", sa.Text(), nullable=True),
        sa.Column("allocated_by_user_id", sa.Integer(), nullable=True),
        _timestamp("allocated_at"),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["stock_holding_id"], ["stock_holdings.id"]),
        sa.ForeignKeyConstraint(["job_order_id"], ["job_orders.id"]),
        sa.ForeignKeyConstraint(["allocated_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["removed_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sticker_usages", schema=None) as batch_op:
        batch_op.create_index("ix_sticker_usages_stock_holding_id", ["stock_holding_id"], unique=False)
        batch_op.create_index("ix_sticker_usages_sticker_number", ["sticker_number"], unique=False)
        batch_op.create_index("ix_sticker_usages_job_order_id", ["job_order_id"], unique=False)
        batch_op.create_index("ix_sticker_usages_status", ["status"], unique=False)
        batch_op.create_index("ix_usages_holding_status", ["stock_holding_id", "status"], unique=False)

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tag_number", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="AVAILABLE"),
        sa.Column("allocated_to_job_order_id", sa.Integer(), nullable=True),
        sa.Column("allocated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("allocated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("removal_reported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["allocated_to_job_order_id"], ["job_orders.id"]),
        sa.ForeignKeyConstraint(["allocated_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["removed_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("tags", schema=None) as batch_op:
        batch_op.create_index("ix_tags_tag_number", ["tag_number"], unique=True)
        batch_op.create_index("ix_tags_status", ["status"], unique=False)
        batch_op.create_index("ix_tags_allocated_to_job_order_id", ["allocated_to_job_order_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_order_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("proof_of_payment", sa.Text(), nullable=True),
        sa.Column("submitted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("confirmed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["job_order_id"], ["job_orders.id"]),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["submitted_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["confirmed_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["failed_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_job_order_id", ["job_order_id"], unique=False)
        batch_op.create_index("ix_payments_client_id", ["client_id"], unique=False)
        batch_op.create_index("ix_payments_status", ["status"], unique=False)
        batch_op.create_index("ix_payments_job_status", ["job_order_id", "status"], unique=False)

    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_order_id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("certificate_number", sa.String(32), nullable=False),
        sa.Column("document_number", sa.String(32), nullable=False),
        sa.Column("sticker_number", sa.String(32), nullable=False),
        sa.Column("verification_code", sa.String(128), nullable=False),
        sa.Column("service_type", sa.String(32), nullable=True),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="VALID"),
        sa.Column("document_type", sa.String(16), nullable=False, server_default="Digital"),
        sa.Column("certificate_format", sa.String(8), nullable=False, server_default="A4"),
        sa.ForeignKeyConstraint(["job_order_id"], ["job_orders.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_order_id", name="uq_certificates_job_order"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("certificates", schema=None) as batch_op:
        batch_op.create_index("ix_certificates_client_id", ["client_id"], unique=False)
        batch_op.create_index("ix_certificates_certificate_number", ["certificate_number"], unique=True)
        batch_op.create_index("ix_certificates_verification_code", ["verification_code"], unique=True)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("scope", sa.String(16), nullable=False, server_default=""),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "scope", name="uq_document_sequences_type_scope"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "offline_job_queue",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("offline_id", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("stock_holding_id", sa.Integer(), nullable=True),
        sa.Column("sticker_number", sa.String(16), nullable=True),
        sa.Column("photo", sa.Text(), nullable=True),
        sa.Column("tag_number", sa.String(64), nullable=True),
        sa.Column("sync_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("job_order_id", sa.Integer(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("discarded_by_user_id", sa.Integer(), nullable=True),
        sa.Column("discard_reason", sa.Text(), nullable=True),
        _timestamp("queued_at"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["stock_holding_id"], ["stock_holdings.id"]),
        sa.ForeignKeyConstraint(["job_order_id"], ["job_orders.id"]),
        sa.ForeignKeyConstraint(["discarded_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("offline_job_queue", schema=None) as batch_op:
        batch_op.create_index("ix_offline_job_queue_offline_id", ["offline_id"], unique=True)
        batch_op.create_index("ix_offline_queue_status", ["sync_status"], unique=False)

    op.create_table(
        "sync_state",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_syncing", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_name", sa.String(255), nullable=True),
        sa.Column("actor_role", sa.String(32), nullable=True),
        sa.Column("displayed_actor_user_id", sa.Integer(), nullable=True),
        sa.Column("displayed_actor_name", sa.String(255), nullable=True),
        sa.Column("is_delegated", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("entity_name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("severity", sa.String(16), nullable=False, server_default="low"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["displayed_actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("activity_logs", schema=None) as batch_op:
        batch_op.create_index("ix_activity_logs_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_activity_logs_action_type", ["action_type"], unique=False)
        batch_op.create_index("ix_activity_logs_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_activity_entity", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "change_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_name", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_change_events_event_name", "change_events", ["event_name"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("notification_type", sa.String(16), nullable=False, server_default="general"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(255), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "is_read"], unique=False)


def downgrade():
    op.drop_table("notifications")
    op.drop_table("change_events")
    op.drop_table("activity_logs")
    op.drop_table("sync_state")
    op.drop_table("offline_job_queue")
    op.drop_table("document_sequences")
    op.drop_table("certificates")
    op.drop_table("payments")
    op.drop_table("tags")
    op.drop_table("sticker_usages")
    op.drop_table("job_orders")
    op.drop_table("stock_holdings")
    op.drop_table("stock_transfers")
    op.drop_table("stock_requests")
    op.drop_table("sticker_lots")
    op.drop_table("delegate_assignments")
    op.drop_table("delegations")
    op.drop_table("clients")
    op.drop_table("users")
    op.drop_table("regions")
