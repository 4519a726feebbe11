"""initial schema

Revision ID: 202510180900
Revises:
Create Date: 2025-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510180900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("birthday", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "costs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("sum", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("sum >= 0", name="ck_costs_sum_positive"),
    )
    op.create_index("ix_costs_userid_created_at", "costs", ["userid", "created_at"])
    op.create_index(
        "ix_costs_category_userid_created_at",
        "costs",
        ["category", "userid", "created_at"],
    )

    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("computed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("userid", "year", "month", name="uq_report_user_month"),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_report_month_range"),
    )

    op.create_table(
        "logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("level", sa.String(length=20), nullable=False, server_default="info"),
        sa.Column("message", sa.String(length=200), nullable=False),
        sa.Column("method", sa.String(length=10)),
        sa.Column("path", sa.String(length=500)),
        sa.Column("status_code", sa.Integer()),
        sa.Column("meta", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_logs_created_at", "logs", ["created_at"])


def downgrade():
    op.drop_index("ix_logs_created_at", table_name="logs")
    op.drop_table("logs")
    op.drop_table("reports")
    op.drop_index("ix_costs_category_userid_created_at", table_name="costs")
    op.drop_index("ix_costs_userid_created_at", table_name="costs")
    op.drop_table("costs")
    op.drop_table("users")
