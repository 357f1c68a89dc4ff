"""Data structures for the generation task lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """Lifecycle statuses for generation_task records."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.SUCCESS, TaskStatus.FAILED, TaskStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.PROCESSING})

# Statuses a task may be in for a write carrying the key status to succeed.
ALLOWED_SOURCES: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PENDING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.PENDING, TaskStatus.PROCESSING}),
    TaskStatus.SUCCESS: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.FAILED: ACTIVE_STATUSES,
    TaskStatus.CANCELLED: ACTIVE_STATUSES,
}


class OutputType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


@dataclass(slots=True)
class GenerationResult:
    """Single artifact produced by a provider.

    ``durable`` is ``None`` for raw provider output and becomes ``True`` or
    ``False`` once the result storage policy has been applied.
    """

    type: str
    url: str
    metadata: dict[str, Any] = field(default_factory=dict)
    durable: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "url": self.url, "metadata": self.metadata}
        if self.durable is not None:
            data["durable"] = self.durable
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GenerationResult":
        return cls(
            type=str(data.get("type") or OutputType.IMAGE.value),
            url=str(data["url"]),
            metadata=dict(data.get("metadata") or {}),
            durable=data.get("durable"),
        )


@dataclass(slots=True)
class GenerationTask:
    """Snapshot of a generation task as stored in the relational store."""

    id: str
    model_id: str
    prompt: str
    input_images: list[str]
    number_of_outputs: int
    parameters: dict[str, Any]
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    provider_task_id: str | None = None
    progress: float | None = None
    results: list[GenerationResult] | None = None
    error_message: str | None = None
    dispatched_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


_UNSET: Any = object()


@dataclass(slots=True)
class TaskUpdate:
    """Partial set of fields applied by ``TaskManager.update_task``.

    Fields left at the sentinel are not touched. ``None`` explicitly clears a
    nullable column.
    """

    status: TaskStatus | None = None
    provider_task_id: str | None = _UNSET
    progress: float | None = _UNSET
    results: list[GenerationResult] | None = _UNSET
    error_message: str | None = _UNSET
    dispatched_at: datetime | None = _UNSET
    completed_at: datetime | None = _UNSET
    duration_ms: int | None = _UNSET

    def provided(self) -> dict[str, Any]:
        """Return only the fields that were explicitly set."""
        values: dict[str, Any] = {}
        for name in (
            "provider_task_id",
            "progress",
            "results",
            "error_message",
            "dispatched_at",
            "completed_at",
            "duration_ms",
        ):
            value = getattr(self, name)
            if value is not _UNSET:
                values[name] = value
        return values


@dataclass(slots=True)
class TaskUpdateOutcome:
    """Result of an update: the stored snapshot and whether the write won."""

    task: GenerationTask
    applied: bool


@dataclass(slots=True)
class TaskFilter:
    status: TaskStatus | None = None
    model_id: str | None = None


@dataclass(slots=True)
class TaskPage:
    items: list[GenerationTask]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total
