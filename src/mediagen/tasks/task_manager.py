"""Lifecycle owner of generation tasks."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..catalog.catalog_service import ModelCatalog
from ..exceptions import InvalidTransitionError, ensure_found
from ..generation.generation_errors import ValidationError
from ..repositories.task_repository import TaskRepository
from .task_models import (
    ACTIVE_STATUSES,
    ALLOWED_SOURCES,
    GenerationTask,
    TaskFilter,
    TaskPage,
    TaskStatus,
    TaskUpdate,
    TaskUpdateOutcome,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TaskManager:
    """Create, transition and read generation tasks.

    Every mutation funnels through :meth:`update_task`, which normalises the
    fields required by the target status and issues one conditional write.
    Terminal tasks are never modified: late writers get the stored snapshot
    back with ``applied=False``.
    """

    task_repo: TaskRepository
    catalog: ModelCatalog | None = None
    clock: Callable[[], datetime] = field(default=_utcnow)
    log: logging.Logger = field(default_factory=lambda: logger)

    def create_task(
        self,
        *,
        model_id: str,
        prompt: str,
        parameters: dict[str, Any] | None = None,
        input_images: Sequence[str] | None = None,
        number_of_outputs: int = 1,
    ) -> GenerationTask:
        if not prompt or not prompt.strip():
            raise ValidationError(
                "prompt must not be empty",
                details=[{"loc": ["prompt"], "msg": "field required"}],
            )
        if number_of_outputs < 1:
            raise ValidationError(
                "number_of_outputs must be a positive integer",
                details=[{"loc": ["number_of_outputs"], "msg": "must be >= 1"}],
            )
        now = self.clock()
        task = GenerationTask(
            id=uuid.uuid4().hex,
            model_id=model_id,
            prompt=prompt,
            input_images=list(input_images or []),
            number_of_outputs=number_of_outputs,
            parameters=dict(parameters or {}),
            status=TaskStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.task_repo.create(task)
        self.log.info(
            "generation.task.created",
            extra={"task_id": task.id, "model_id": model_id},
        )
        return task

    def update_task(self, task_id: str, update: TaskUpdate) -> TaskUpdateOutcome:
        """Apply ``update`` unless the task already reached a terminal state.

        Raises :class:`NotFoundError` for unknown ids and
        :class:`InvalidTransitionError` for moves the state machine forbids
        on a task that is still active (for example PENDING -> SUCCESS).
        """
        values = update.provided()
        now = self.clock()
        target = update.status
        if target is None:
            sources = ACTIVE_STATUSES
            # results/error_message only exist alongside SUCCESS/FAILED
            values.pop("results", None)
            values.pop("error_message", None)
        else:
            sources = ALLOWED_SOURCES[target]
            values["status"] = target
            self._normalise_for_status(target, values, now)
            if target.is_terminal and values.get("duration_ms") is None:
                self._stamp_duration(task_id, values)
        values["updated_at"] = now

        applied = self.task_repo.apply_update(task_id, values, allowed_sources=sources)
        current = ensure_found(self.task_repo.find(task_id), entity="Task", identifier=task_id)
        if applied:
            if target is not None and target.is_terminal:
                self.log.info(
                    "generation.task.closed",
                    extra={"task_id": task_id, "status": target.value},
                )
            return TaskUpdateOutcome(task=current, applied=True)
        if current.is_terminal:
            self.log.info(
                "generation.task.update_ignored",
                extra={
                    "task_id": task_id,
                    "status": current.status.value,
                    "requested_status": target.value if target else None,
                },
            )
            return TaskUpdateOutcome(task=current, applied=False)
        raise InvalidTransitionError(
            f"Cannot move task '{task_id}' from {current.status.value} to "
            f"{target.value if target else current.status.value}"
        )

    def _normalise_for_status(
        self, target: TaskStatus, values: dict[str, Any], now: datetime
    ) -> None:
        if target is TaskStatus.SUCCESS:
            if values.get("results") is None:
                values["results"] = []
            values["error_message"] = None
            values.setdefault("progress", 1.0)
        elif target is TaskStatus.FAILED:
            if not values.get("error_message"):
                values["error_message"] = "Generation failed"
            values["results"] = None
        else:
            values["results"] = None
            values["error_message"] = None
        if target.is_terminal and values.get("completed_at") is None:
            values["completed_at"] = now
        elif not target.is_terminal:
            values.pop("completed_at", None)
            values.pop("duration_ms", None)

    def _stamp_duration(self, task_id: str, values: dict[str, Any]) -> None:
        # Wall clock from dispatch start; tasks closed before dispatch count from creation.
        stored = self.task_repo.find(task_id)
        if stored is None:
            return
        started = values.get("dispatched_at") or stored.dispatched_at or stored.created_at
        elapsed = values["completed_at"] - started
        values["duration_ms"] = max(0, int(elapsed.total_seconds() * 1000))

    def get_task(self, task_id: str) -> GenerationTask:
        return self.task_repo.get(task_id)

    def find_task(self, task_id: str) -> GenerationTask | None:
        return self.task_repo.find(task_id)

    def list_tasks(
        self,
        task_filter: TaskFilter | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> TaskPage:
        """Newest first; ``limit`` is clamped to ``1..MAX_PAGE_SIZE``."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        items, total = self.task_repo.list_page(task_filter or TaskFilter(), limit=limit, offset=offset)
        return TaskPage(items=items, total=total, limit=limit, offset=offset)

    def cancel_task(self, task_id: str) -> TaskUpdateOutcome:
        outcome = self.update_task(task_id, TaskUpdate(status=TaskStatus.CANCELLED))
        if outcome.applied:
            self.log.info("generation.task.cancelled", extra={"task_id": task_id})
        return outcome

    def list_resumable(self) -> list[GenerationTask]:
        return self.task_repo.list_resumable()

    def delete_task(self, task_id: str) -> None:
        self.task_repo.delete(task_id)
        self.log.info("generation.task.deleted", extra={"task_id": task_id})

    def increment_model_usage(self, model_id: str) -> None:
        """Bump the catalog usage counter; failures are logged and dropped."""
        if self.catalog is None:
            return
        try:
            self.catalog.increment_usage(model_id)
        except Exception:  # noqa: BLE001
            self.log.warning(
                "generation.usage.increment_failed",
                extra={"model_id": model_id},
                exc_info=True,
            )
