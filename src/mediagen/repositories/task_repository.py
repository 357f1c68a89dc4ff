"""Persistence layer for generation tasks."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.db_models import GenerationTaskModel
from ..exceptions import ensure_found, handle_sqlalchemy_errors
from ..tasks.task_models import GenerationResult, GenerationTask, TaskFilter, TaskStatus


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip; every timestamp we write is UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _dump_results(results: list[GenerationResult] | None) -> str | None:
    if results is None:
        return None
    return json.dumps([result.to_dict() for result in results], ensure_ascii=False)


def _load_results(raw: str | None) -> list[GenerationResult] | None:
    if raw is None:
        return None
    return [GenerationResult.from_dict(item) for item in json.loads(raw)]


class TaskRepository:
    """Manage generation_task records.

    All status changes go through :meth:`apply_update`, a single conditional
    ``UPDATE ... WHERE status IN (...)`` statement, so two writers racing to
    close the same task can never both succeed.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(self, task: GenerationTask) -> None:
        with handle_sqlalchemy_errors(entity="generation_task"):
            with self._session_factory() as session:
                session.add(
                    GenerationTaskModel(
                        id=task.id,
                        model_id=task.model_id,
                        prompt=task.prompt,
                        input_images_json=json.dumps(task.input_images) if task.input_images else None,
                        number_of_outputs=task.number_of_outputs,
                        parameters_json=json.dumps(task.parameters, ensure_ascii=False),
                        status=task.status.value,
                        provider_task_id=task.provider_task_id,
                        progress=task.progress,
                        results_json=_dump_results(task.results),
                        error_message=task.error_message,
                        created_at=task.created_at,
                        updated_at=task.updated_at,
                        dispatched_at=task.dispatched_at,
                        completed_at=task.completed_at,
                        duration_ms=task.duration_ms,
                    )
                )
                session.commit()

    def find(self, task_id: str) -> GenerationTask | None:
        with handle_sqlalchemy_errors(entity="generation_task"):
            with self._session_factory() as session:
                model = session.get(GenerationTaskModel, task_id)
                return self._to_domain(model) if model is not None else None

    def get(self, task_id: str) -> GenerationTask:
        return ensure_found(self.find(task_id), entity="Task", identifier=task_id)

    def apply_update(
        self,
        task_id: str,
        values: dict[str, Any],
        *,
        allowed_sources: Iterable[TaskStatus],
    ) -> bool:
        """Write ``values`` only if the stored status is in ``allowed_sources``.

        Returns ``True`` when the row was updated.
        """
        columns = self._to_columns(values)
        sources = [status.value for status in allowed_sources]
        stmt = (
            update(GenerationTaskModel)
            .where(
                GenerationTaskModel.id == task_id,
                GenerationTaskModel.status.in_(sources),
            )
            .values(**columns)
            .execution_options(synchronize_session=False)
        )
        with handle_sqlalchemy_errors(entity="generation_task"):
            with self._session_factory() as session:
                result = session.execute(stmt)
                session.commit()
                return result.rowcount == 1

    def list_page(self, task_filter: TaskFilter, *, limit: int, offset: int) -> tuple[list[GenerationTask], int]:
        conditions = []
        if task_filter.status is not None:
            conditions.append(GenerationTaskModel.status == task_filter.status.value)
        if task_filter.model_id is not None:
            conditions.append(GenerationTaskModel.model_id == task_filter.model_id)

        query = (
            select(GenerationTaskModel)
            .where(*conditions)
            .order_by(GenerationTaskModel.created_at.desc(), GenerationTaskModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        count_query = select(func.count()).select_from(GenerationTaskModel).where(*conditions)
        with handle_sqlalchemy_errors(entity="generation_task"):
            with self._session_factory() as session:
                rows = session.scalars(query).all()
                total = session.scalar(count_query) or 0
                return [self._to_domain(row) for row in rows], int(total)

    def list_resumable(self) -> list[GenerationTask]:
        """Return in-flight tasks that already hold a provider task id."""
        query = (
            select(GenerationTaskModel)
            .where(
                GenerationTaskModel.status == TaskStatus.PROCESSING.value,
                GenerationTaskModel.provider_task_id.is_not(None),
            )
            .order_by(GenerationTaskModel.created_at.asc())
        )
        with handle_sqlalchemy_errors(entity="generation_task"):
            with self._session_factory() as session:
                return [self._to_domain(row) for row in session.scalars(query).all()]

    def delete(self, task_id: str) -> None:
        with handle_sqlalchemy_errors(entity="generation_task"):
            with self._session_factory() as session:
                model = ensure_found(
                    session.get(GenerationTaskModel, task_id),
                    entity="Task",
                    identifier=task_id,
                )
                session.delete(model)
                session.commit()

    @staticmethod
    def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
        columns: dict[str, Any] = {}
        for name, value in values.items():
            if name == "results":
                columns["results_json"] = _dump_results(value)
            elif name == "status":
                columns["status"] = TaskStatus(value).value
            else:
                columns[name] = value
        return columns

    @staticmethod
    def _to_domain(model: GenerationTaskModel) -> GenerationTask:
        return GenerationTask(
            id=model.id,
            model_id=model.model_id,
            prompt=model.prompt,
            input_images=json.loads(model.input_images_json) if model.input_images_json else [],
            number_of_outputs=model.number_of_outputs,
            parameters=json.loads(model.parameters_json or "{}"),
            status=TaskStatus(model.status),
            provider_task_id=model.provider_task_id,
            progress=model.progress,
            results=_load_results(model.results_json),
            error_message=model.error_message,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
            dispatched_at=as_utc(model.dispatched_at),
            completed_at=as_utc(model.completed_at),
            duration_ms=model.duration_ms,
        )
