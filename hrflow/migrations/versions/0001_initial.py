"""Initial reconciliation and notification schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

audit_actor_type = postgresql.ENUM(
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("role", sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"], unique=False)
    op.create_index("ix_user_roles_role", "user_roles", ["role"], unique=False)

    op.create_table(
        "user_push_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.String(length=255), nullable=False),
        sa.Column("auth", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("endpoint", name="uq_user_push_subscriptions_endpoint"),
    )
    op.create_index(
        "ix_user_push_subscriptions_user_id",
        "user_push_subscriptions",
        ["user_id"],
        unique=False,
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("employee_code", sa.String(length=64), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("designation", sa.String(length=255), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("shift_id", sa.String(length=128), nullable=True),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_employees_employee_code", "employees", ["employee_code"], unique=False)
    op.create_index("ix_employees_email", "employees", ["email"], unique=False)
    op.create_index("ix_employees_user_id", "employees", ["user_id"], unique=False)
    op.execute("CREATE INDEX IF NOT EXISTS ix_employees_email_lower ON employees (lower(email))")

    op.create_table(
        "reconciliation_requests",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default=sa.text("'attendance'")),
        sa.Column("employee_id", sa.String(length=128), nullable=False),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("employee_code", sa.String(length=64), nullable=True),
        sa.Column("designation", sa.String(length=255), nullable=True),
        sa.Column("attendance_date", sa.String(length=64), nullable=True),
        sa.Column("requested_in_time", sa.String(length=64), nullable=True),
        sa.Column("requested_out_time", sa.String(length=64), nullable=True),
        sa.Column("in_time_remarks", sa.Text(), nullable=True),
        sa.Column("out_time_remarks", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("applied_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_reconciliation_requests_status",
        ),
        sa.CheckConstraint(
            "kind IN ('attendance', 'breaktime')",
            name="ck_reconciliation_requests_kind",
        ),
    )
    op.create_index("ix_reconciliation_requests_kind", "reconciliation_requests", ["kind"], unique=False)
    op.create_index(
        "ix_reconciliation_requests_employee_id",
        "reconciliation_requests",
        ["employee_id"],
        unique=False,
    )
    op.create_index("ix_reconciliation_requests_status", "reconciliation_requests", ["status"], unique=False)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=128), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("employee_code", sa.String(length=64), nullable=True),
        sa.Column("designation", sa.String(length=255), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("shift_id", sa.String(length=128), nullable=True),
        sa.Column("in_time", sa.String(length=32), nullable=True),
        sa.Column("out_time", sa.String(length=32), nullable=True),
        sa.Column("in_time_remarks", sa.Text(), nullable=True),
        sa.Column("out_time_remarks", sa.Text(), nullable=True),
        sa.Column("flag", sa.String(length=1), nullable=False, server_default=sa.text("'P'")),
        sa.Column("is_reconciled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reconciliation_id", sa.String(length=128), nullable=True),
        sa.Column("approval_status", sa.String(length=32), nullable=True),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("employee_id", "attendance_date", name="uq_attendance_records_employee_date"),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index(
        "ix_attendance_records_attendance_date",
        "attendance_records",
        ["attendance_date"],
        unique=False,
    )

    op.create_table(
        "advance_salary_requests",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=128), nullable=True),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("advance_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("request_date", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'Pending'")),
        sa.Column("remarks", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_advance_salary_requests_employee_id",
        "advance_salary_requests",
        ["employee_id"],
        unique=False,
    )

    op.create_table(
        "visit_applications",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=128), nullable=True),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("location", sa.String(length=512), nullable=True),
        sa.Column("visit_date", sa.String(length=64), nullable=True),
        sa.Column("from_date", sa.String(length=64), nullable=True),
        sa.Column("to_date", sa.String(length=64), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'Pending'")),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
    )
    op.create_index("ix_visit_applications_employee_id", "visit_applications", ["employee_id"], unique=False)

    op.create_table(
        "project_tasks",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("task_code", sa.String(length=64), nullable=True),
        sa.Column("task_title", sa.String(length=512), nullable=True),
        sa.Column("project_title", sa.String(length=512), nullable=True),
        sa.Column("priority", sa.String(length=32), nullable=True),
        sa.Column("due_date", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_project_tasks_task_code", "project_tasks", ["task_code"], unique=False)

    op.create_table(
        "message_templates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("subject", sa.String(length=512), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("updated_at"),
        sa.UniqueConstraint("channel", "slug", name="uq_message_templates_channel_slug"),
        sa.CheckConstraint(
            "channel IN ('email', 'whatsapp', 'telegram')",
            name="ck_message_templates_channel",
        ),
    )
    op.create_index("ix_message_templates_channel", "message_templates", ["channel"], unique=False)
    op.create_index("ix_message_templates_slug", "message_templates", ["slug"], unique=False)

    op.create_table(
        "email_provider_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("service_provider", sa.String(length=32), nullable=False, server_default=sa.text("'smtp'")),
        sa.Column("host", sa.String(length=255), nullable=True),
        sa.Column("port", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("password", sa.String(length=255), nullable=True),
        sa.Column("from_email", sa.String(length=255), nullable=False),
        sa.Column("resend_api_key", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )

    op.create_table(
        "whatsapp_gateways",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("api_secret", sa.String(length=255), nullable=False),
        sa.Column("account_unique_id", sa.String(length=255), nullable=False),
        sa.Column("endpoint_url", sa.String(length=512), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )

    op.create_table(
        "telegram_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("bot_token", sa.String(length=255), nullable=False),
        sa.Column("chat_id", sa.String(length=128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _timestamp("ts_utc"),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("telegram_settings")
    op.drop_table("whatsapp_gateways")
    op.drop_table("email_provider_profiles")
    op.drop_index("ix_message_templates_slug", table_name="message_templates")
    op.drop_index("ix_message_templates_channel", table_name="message_templates")
    op.drop_table("message_templates")
    op.drop_index("ix_project_tasks_task_code", table_name="project_tasks")
    op.drop_table("project_tasks")
    op.drop_index("ix_visit_applications_employee_id", table_name="visit_applications")
    op.drop_table("visit_applications")
    op.drop_index("ix_advance_salary_requests_employee_id", table_name="advance_salary_requests")
    op.drop_table("advance_salary_requests")
    op.drop_index("ix_attendance_records_attendance_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_reconciliation_requests_status", table_name="reconciliation_requests")
    op.drop_index("ix_reconciliation_requests_employee_id", table_name="reconciliation_requests")
    op.drop_index("ix_reconciliation_requests_kind", table_name="reconciliation_requests")
    op.drop_table("reconciliation_requests")
    op.execute("DROP INDEX IF EXISTS ix_employees_email_lower")
    op.drop_index("ix_employees_user_id", table_name="employees")
    op.drop_index("ix_employees_email", table_name="employees")
    op.drop_index("ix_employees_employee_code", table_name="employees")
    op.drop_table("employees")
    op.drop_index("ix_user_push_subscriptions_user_id", table_name="user_push_subscriptions")
    op.drop_table("user_push_subscriptions")
    op.drop_index("ix_user_roles_role", table_name="user_roles")
    op.drop_index("ix_user_roles_user_id", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    audit_actor_type.drop(op.get_bind(), checkfirst=True)
