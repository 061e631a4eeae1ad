"""Leave applications and holiday announcements

Revision ID: 0002_leave_applications_and_holidays
Revises: 0001_initial
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002_leave_applications_and_holidays"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "leave_applications",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=128), nullable=True),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("leave_type", sa.String(length=64), nullable=True),
        sa.Column("from_date", sa.String(length=64), nullable=True),
        sa.Column("to_date", sa.String(length=64), nullable=True),
        sa.Column("total_days", sa.Integer(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'Pending'")),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
    )
    op.create_index("ix_leave_applications_employee_id", "leave_applications", ["employee_id"], unique=False)

    op.create_table(
        "holidays",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("holiday_type", sa.String(length=64), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("from_date", sa.String(length=64), nullable=False),
        sa.Column("to_date", sa.String(length=64), nullable=True),
        sa.Column("email_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("holidays")
    op.drop_index("ix_leave_applications_employee_id", table_name="leave_applications")
    op.drop_table("leave_applications")
