"""initial schema

Revision ID: 202610191200
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610191200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name", name="uq_categories_name"),
    )

    op.create_table(
        "sub_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("category_id", "name", name="uq_sub_category_name"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("sub_category", sa.String(length=100)),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("recurrence_type", sa.String(length=20)),
        sa.Column("recurrence_interval", sa.Integer()),
        sa.Column("recurrence_end_date", sa.Date()),
        sa.Column("parent_expense_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "recurrence_interval IS NULL OR recurrence_interval > 0",
            name="ck_expenses_interval_positive",
        ),
    )
    op.create_index("ix_expenses_date", "expenses", ["date"])
    op.create_index("ix_expenses_category_date", "expenses", ["category", "date"])
    op.create_index("ix_expenses_parent", "expenses", ["parent_expense_id"])
    op.create_index("ix_expenses_is_recurring", "expenses", ["is_recurring"])
    op.create_index(
        "uq_expenses_dedup_key",
        "expenses",
        [
            "date",
            "category",
            sa.text("coalesce(sub_category, '')"),
            "amount_cents",
            "description",
        ],
        unique=True,
    )


def downgrade():
    op.drop_index("uq_expenses_dedup_key", table_name="expenses")
    op.drop_index("ix_expenses_is_recurring", table_name="expenses")
    op.drop_index("ix_expenses_parent", table_name="expenses")
    op.drop_index("ix_expenses_category_date", table_name="expenses")
    op.drop_index("ix_expenses_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("sub_categories")
    op.drop_table("categories")
