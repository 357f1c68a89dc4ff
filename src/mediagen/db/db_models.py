"""SQLAlchemy ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base declarative class."""


class GenerationTaskModel(Base):
    __tablename__ = "generation_task"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    model_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    input_images_json: Mapped[str | None] = mapped_column(Text)
    number_of_outputs: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    parameters_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    provider_task_id: Mapped[str | None] = mapped_column(String(255))
    progress: Mapped[float | None] = mapped_column(Float)
    results_json: Mapped[str | None] = mapped_column(Text)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer)


class UploadedArtifactModel(Base):
    __tablename__ = "uploaded_artifact"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Plain column, not a foreign key: artifacts outlive their task.
    task_id: Mapped[str | None] = mapped_column(String(64), index=True)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    stored_url: Mapped[str] = mapped_column(Text, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
