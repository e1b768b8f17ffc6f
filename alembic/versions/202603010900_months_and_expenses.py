"""months and expenses

Revision ID: 202603010900
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202603010900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "months",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("month_code", sa.String(length=7), nullable=False),
        sa.Column("label", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("salary1_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("salary2_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "month_code", name="uq_month_user_code"),
        sa.CheckConstraint("salary1_cents >= 0", name="ck_month_salary1_positive"),
        sa.CheckConstraint("salary2_cents >= 0", name="ck_month_salary2_positive"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "month_id",
            sa.String(length=36),
            sa.ForeignKey("months.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("value_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "type", sa.Enum("fixed", "variable", name="expensetype"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("value_cents >= 0", name="ck_expenses_value_positive"),
    )
    op.create_index("ix_expenses_user_month", "expenses", ["user_id", "month_id"])


def downgrade():
    op.drop_index("ix_expenses_user_month", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("months")
    sa.Enum(name="expensetype").drop(op.get_bind(), checkfirst=True)
