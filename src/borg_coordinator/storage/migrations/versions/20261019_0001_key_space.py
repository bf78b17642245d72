"""Key space tables: values, set members, list entries."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "kv_entries",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "set_members",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("member", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("key", "member", name="pk_set_members"),
    )
    op.create_index("ix_set_members_key", "set_members", ["key"])
    op.create_table(
        "list_entries",
        sa.Column("entry_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_list_entries_key_entry", "list_entries", ["key", "entry_id"])


def downgrade() -> None:
    op.drop_index("idx_list_entries_key_entry", table_name="list_entries")
    op.drop_table("list_entries")
    op.drop_index("ix_set_members_key", table_name="set_members")
    op.drop_table("set_members")
    op.drop_table("kv_entries")
