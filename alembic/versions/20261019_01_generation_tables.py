"""Create generation_task and uploaded_artifact tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "generation_task",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("model_id", sa.String(length=64), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("input_images_json", sa.Text()),
        sa.Column("number_of_outputs", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("parameters_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("provider_task_id", sa.String(length=255)),
        sa.Column("progress", sa.Float()),
        sa.Column("results_json", sa.Text()),
        sa.Column("error_message", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("duration_ms", sa.Integer()),
    )
    op.create_index("ix_generation_task_model_id", "generation_task", ["model_id"])
    op.create_index("ix_generation_task_status", "generation_task", ["status"])
    op.create_index("ix_generation_task_created_at", "generation_task", ["created_at"])

    op.create_table(
        "uploaded_artifact",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("task_id", sa.String(length=64)),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("stored_url", sa.Text(), nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_uploaded_artifact_task_id", "uploaded_artifact", ["task_id"])


def downgrade() -> None:
    op.drop_index("ix_uploaded_artifact_task_id", table_name="uploaded_artifact")
    op.drop_table("uploaded_artifact")
    op.drop_index("ix_generation_task_created_at", table_name="generation_task")
    op.drop_index("ix_generation_task_status", table_name="generation_task")
    op.drop_index("ix_generation_task_model_id", table_name="generation_task")
    op.drop_table("generation_task")
