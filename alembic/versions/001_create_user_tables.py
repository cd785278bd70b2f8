"""Create user and user_topic tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("display_name", sa.String(length=256), nullable=True),
        sa.Column("interaction_style", sa.String(length=32), nullable=False, server_default="friendly"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_user_email"), "user", ["email"])

    op.create_table(
        "user_topic",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("topic", sa.String(length=64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "topic", name="uq_user_topic_user_id_topic"),
    )
    op.create_index(op.f("ix_user_topic_user_id"), "user_topic", ["user_id"])


def downgrade() -> None:
    op.drop_index(op.f("ix_user_topic_user_id"), table_name="user_topic")
    op.drop_table("user_topic")
    op.drop_index(op.f("ix_user_email"), table_name="user")
    op.drop_table("user")
