"""Pydantic schemas for the generation API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..tasks.task_models import GenerationResult, GenerationTask, TaskPage, TaskStatus


class GenerationSubmitRequest(BaseModel):
    model_id: str = Field(..., min_length=1, description="Catalog model id or slug.")
    prompt: str
    input_images: list[str] = Field(default_factory=list)
    number_of_outputs: int | None = Field(default=None, ge=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class GenerationResultPayload(BaseModel):
    type: str
    url: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    durable: bool | None = None

    @classmethod
    def from_domain(cls, result: GenerationResult) -> "GenerationResultPayload":
        return cls(type=result.type, url=result.url, metadata=result.metadata, durable=result.durable)


class GenerationSubmitResponse(BaseModel):
    task_id: str
    status: TaskStatus
    results: list[GenerationResultPayload] | None = None
    provider_task_id: str | None = None
    message: str


class GenerationTaskResponse(BaseModel):
    id: str
    model_id: str
    prompt: str
    input_images: list[str]
    number_of_outputs: int
    parameters: dict[str, Any]
    status: TaskStatus
    provider_task_id: str | None
    progress: float | None
    results: list[GenerationResultPayload] | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime
    dispatched_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None

    @classmethod
    def from_domain(cls, task: GenerationTask) -> "GenerationTaskResponse":
        return cls(
            id=task.id,
            model_id=task.model_id,
            prompt=task.prompt,
            input_images=task.input_images,
            number_of_outputs=task.number_of_outputs,
            parameters=task.parameters,
            status=task.status,
            provider_task_id=task.provider_task_id,
            progress=task.progress,
            results=(
                [GenerationResultPayload.from_domain(item) for item in task.results]
                if task.results is not None
                else None
            ),
            error_message=task.error_message,
            created_at=task.created_at,
            updated_at=task.updated_at,
            dispatched_at=task.dispatched_at,
            completed_at=task.completed_at,
            duration_ms=task.duration_ms,
        )


class GenerationTaskListResponse(BaseModel):
    items: list[GenerationTaskResponse]
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def from_page(cls, page: TaskPage) -> "GenerationTaskListResponse":
        return cls(
            items=[GenerationTaskResponse.from_domain(task) for task in page.items],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        )


class TaskCancelResponse(BaseModel):
    cancelled: bool
    task: GenerationTaskResponse


class AdapterListResponse(BaseModel):
    adapters: list[str]
