"""records, tags and settings

Revision ID: 202602160900
Revises:
Create Date: 2026-02-16 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202602160900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade():
    op.create_table(
        "records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "type", sa.Enum("Credit", "Debit", name="recordtype"), nullable=False
        ),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("date", sa.Date()),
        sa.Column("description", sa.Text()),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column(
            "recurring_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("recurring_start_date", sa.Date()),
        sa.Column("recurring_end_date", sa.Date()),
        sa.Column("recurring_interval_value", sa.Integer()),
        sa.Column(
            "recurring_interval_unit",
            sa.Enum("Days", "Months", "Years", name="intervalunit"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_records_amount_positive"),
    )
    op.create_index("ix_records_user_date", "records", ["user_id", "date"])
    op.create_index(
        "ix_records_user_type_date", "records", ["user_id", "type", "date"]
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=50), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),
    )

    op.create_table(
        "record_tags",
        sa.Column(
            "record_id", sa.Integer(), sa.ForeignKey("records.id"), primary_key=True
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("key", sa.String(length=120), nullable=False),
        sa.Column("value_json", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "key", name="uq_setting_user_key"),
    )


def downgrade():
    op.drop_table("settings")
    op.drop_table("record_tags")
    op.drop_table("tags")
    op.drop_index("ix_records_user_type_date", table_name="records")
    op.drop_index("ix_records_user_date", table_name="records")
    op.drop_table("records")
