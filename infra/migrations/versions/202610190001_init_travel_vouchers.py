"""init travel voucher tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_resource_type", "audit_log", ["resource_type"])
    op.create_index("ix_audit_log_resource_id", "audit_log", ["resource_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])
    op.create_index("ix_audit_log_resource", "audit_log", ["resource_type", "resource_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("position", sa.String(), nullable=True),
        sa.Column("assigned_supervisor_id", sa.String(), nullable=True),
        sa.Column("fls_supervisor_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["assigned_supervisor_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["fls_supervisor_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_assigned_supervisor_id", "users", ["assigned_supervisor_id"])
    op.create_index("ix_users_fls_supervisor_id", "users", ["fls_supervisor_id"])
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "trips",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("trip_date", sa.Date(), nullable=False),
        sa.Column("from_location", sa.String(), nullable=True),
        sa.Column("to_location", sa.String(), nullable=True),
        sa.Column("purpose", sa.String(), nullable=True),
        sa.Column("miles_calculated", sa.Numeric(10, 2), nullable=False),
        sa.Column("mileage_source", sa.String(length=16), nullable=False),
        sa.Column("lodging_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("meals_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("other_expenses", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trips_owner_id", "trips", ["owner_id"])
    op.create_index("ix_trips_trip_date", "trips", ["trip_date"])
    op.create_index("ix_trips_created_at", "trips", ["created_at"])
    op.create_index("ix_trips_owner_date", "trips", ["owner_id", "trip_date"])

    op.create_table(
        "vouchers",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("total_miles", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_lodging", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_meals", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_other", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("mileage_rate", sa.Numeric(6, 4), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("supervisor_id", sa.String(), nullable=True),
        sa.Column("supervisor_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fleet_manager_id", sa.String(), nullable=True),
        sa.Column("fleet_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["supervisor_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["fleet_manager_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["rejected_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "month", "year", name="uq_vouchers_owner_period"),
    )
    op.create_index("ix_vouchers_owner_id", "vouchers", ["owner_id"])
    op.create_index("ix_vouchers_status", "vouchers", ["status"])
    op.create_index("ix_vouchers_created_at", "vouchers", ["created_at"])

    op.create_table(
        "voucher_trips",
        sa.Column("voucher_id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["voucher_id"], ["vouchers.id"]),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"]),
        sa.PrimaryKeyConstraint("voucher_id", "trip_id"),
    )
    op.create_index("ix_voucher_trips_trip_id", "voucher_trips", ["trip_id"])

    op.create_table(
        "mileage_rates",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mileage_rates_effective_from", "mileage_rates", ["effective_from"])
    op.create_index("ix_mileage_rates_effective_to", "mileage_rates", ["effective_to"])
    op.create_index("ix_mileage_rates_created_at", "mileage_rates", ["created_at"])

    op.create_table(
        "assignment_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("inspector_id", sa.String(), nullable=False),
        sa.Column("requesting_supervisor_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("cancel_reason", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_by", sa.String(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["inspector_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["requesting_supervisor_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["processed_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assignment_requests_inspector_id", "assignment_requests", ["inspector_id"])
    op.create_index(
        "ix_assignment_requests_requesting_supervisor_id",
        "assignment_requests",
        ["requesting_supervisor_id"],
    )
    op.create_index("ix_assignment_requests_status", "assignment_requests", ["status"])
    op.create_index("ix_assignment_requests_requested_at", "assignment_requests", ["requested_at"])
    op.create_index(
        "uq_assignment_requests_pending_inspector",
        "assignment_requests",
        ["inspector_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_assignment_requests_pending_inspector", table_name="assignment_requests")
    op.drop_index("ix_assignment_requests_requested_at", table_name="assignment_requests")
    op.drop_index("ix_assignment_requests_status", table_name="assignment_requests")
    op.drop_index("ix_assignment_requests_requesting_supervisor_id", table_name="assignment_requests")
    op.drop_index("ix_assignment_requests_inspector_id", table_name="assignment_requests")
    op.drop_table("assignment_requests")

    op.drop_index("ix_mileage_rates_created_at", table_name="mileage_rates")
    op.drop_index("ix_mileage_rates_effective_to", table_name="mileage_rates")
    op.drop_index("ix_mileage_rates_effective_from", table_name="mileage_rates")
    op.drop_table("mileage_rates")

    op.drop_index("ix_voucher_trips_trip_id", table_name="voucher_trips")
    op.drop_table("voucher_trips")

    op.drop_index("ix_vouchers_created_at", table_name="vouchers")
    op.drop_index("ix_vouchers_status", table_name="vouchers")
    op.drop_index("ix_vouchers_owner_id", table_name="vouchers")
    op.drop_table("vouchers")

    op.drop_index("ix_trips_owner_date", table_name="trips")
    op.drop_index("ix_trips_created_at", table_name="trips")
    op.drop_index("ix_trips_trip_date", table_name="trips")
    op.drop_index("ix_trips_owner_id", table_name="trips")
    op.drop_table("trips")

    op.drop_index("ix_users_created_at", table_name="users")
    op.drop_index("ix_users_fls_supervisor_id", table_name="users")
    op.drop_index("ix_users_assigned_supervisor_id", table_name="users")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")

    op.drop_index("ix_audit_log_resource", table_name="audit_log")
    op.drop_index("ix_audit_log_created_at", table_name="audit_log")
    op.drop_index("ix_audit_log_resource_id", table_name="audit_log")
    op.drop_index("ix_audit_log_resource_type", table_name="audit_log")
    op.drop_index("ix_audit_log_action", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_id", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
