"""Create entry table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "entry",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=64), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("audio_ref", sa.String(length=512), nullable=False),
        sa.Column("transcript_ref", sa.String(length=512), nullable=True),
        sa.Column("summary_ref", sa.String(length=512), nullable=True),
        sa.Column("transcription_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("analysis_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_entry_owner_id"), "entry", ["owner_id"])
    op.create_index(op.f("ix_entry_transcription_status"), "entry", ["transcription_status"])
    op.create_index(op.f("ix_entry_analysis_status"), "entry", ["analysis_status"])


def downgrade() -> None:
    op.drop_index(op.f("ix_entry_analysis_status"), table_name="entry")
    op.drop_index(op.f("ix_entry_transcription_status"), table_name="entry")
    op.drop_index(op.f("ix_entry_owner_id"), table_name="entry")
    op.drop_table("entry")
