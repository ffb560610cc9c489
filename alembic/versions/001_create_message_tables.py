"""Create theme, message and message link tables

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
        "theme",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("project_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_theme_project_id"), "theme", ["project_id"])

    op.create_table(
        "message",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("project_id", sa.String(length=36), nullable=False),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("audio_key", sa.String(length=1024), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("speaker", sa.String(length=256), nullable=True),
        sa.Column("transcript_txt", sa.Text(), nullable=True),
        sa.Column("tone", sa.String(length=16), nullable=True),
        sa.Column("quote", sa.Text(), nullable=True),
        sa.Column("emotional_load", sa.String(length=16), nullable=True),
        sa.Column("processing_status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gcp_job_id", sa.String(length=256), nullable=True),
        sa.Column("gcp_duration", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_message_project_id"), "message", ["project_id"])
    op.create_index(op.f("ix_message_processing_status"), "message", ["processing_status"])

    op.create_table(
        "message_theme",
        sa.Column("message_id", sa.String(length=36), sa.ForeignKey("message.id", ondelete="CASCADE"), nullable=False),
        sa.Column("theme_id", sa.String(length=36), sa.ForeignKey("theme.id", ondelete="CASCADE"), nullable=False),
        sa.PrimaryKeyConstraint("message_id", "theme_id"),
    )

    op.create_table(
        "message_emotion",
        sa.Column("message_id", sa.String(length=36), sa.ForeignKey("message.id", ondelete="CASCADE"), nullable=False),
        sa.Column("emotion_name", sa.String(length=128), nullable=False),
        sa.PrimaryKeyConstraint("message_id", "emotion_name"),
    )


def downgrade() -> None:
    op.drop_table("message_emotion")
    op.drop_table("message_theme")
    op.drop_index(op.f("ix_message_processing_status"), table_name="message")
    op.drop_index(op.f("ix_message_project_id"), table_name="message")
    op.drop_table("message")
    op.drop_index(op.f("ix_theme_project_id"), table_name="theme")
    op.drop_table("theme")
