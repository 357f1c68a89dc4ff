"""Domain service for generation submissions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..adapters.adapters_base import (
    AdapterConfig,
    DispatchError,
    DispatchInProgress,
    DispatchSuccess,
    GenerationRequest,
    ProviderAdapter,
)
from ..adapters.adapters_factory import adapter_config_for, available_adapters, create_adapter
from ..catalog.catalog_models import ResolvedModel
from ..catalog.catalog_service import ModelCatalog
from ..catalog.parameter_validation import ParameterValidator
from ..storage.result_storage import ResultStorageService, StoragePolicy
from ..tasks.task_manager import TaskManager
from ..tasks.task_models import (
    GenerationResult,
    GenerationTask,
    TaskFilter,
    TaskPage,
    TaskStatus,
    TaskUpdate,
    TaskUpdateOutcome,
)
from ..workers.task_poller import PollerPool, PollJob
from .generation_errors import (
    GenerationError,
    ModelInactiveError,
    ModelNotFoundError,
    ProviderDispatchError,
    UnknownAdapterError,
    sanitize_error_message,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SubmissionOutcome:
    """What ``submit_generation`` hands back to its caller."""

    task: GenerationTask
    message: str

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def status(self) -> TaskStatus:
        return self.task.status

    @property
    def results(self) -> list[GenerationResult] | None:
        return self.task.results

    @property
    def provider_task_id(self) -> str | None:
        return self.task.provider_task_id


def storage_policy_for(resolved: ResolvedModel, default_prefix: str) -> StoragePolicy:
    provider = resolved.provider
    return StoragePolicy(
        upload_to_storage=provider.upload_to_storage,
        storage_prefix=provider.storage_prefix or default_prefix,
    )


@dataclass(slots=True)
class GenerationService:
    """Coordinates model resolution, task creation, dispatch and hand-off.

    Errors raised before the task row exists reach the caller. Anything after
    that ends in a terminal task state.
    """

    catalog: ModelCatalog
    validator: ParameterValidator
    task_manager: TaskManager
    result_storage: ResultStorageService
    poller_pool: PollerPool | None = None
    adapter_factory: Callable[[AdapterConfig], ProviderAdapter] = create_adapter
    default_storage_prefix: str = "ai-generation"
    clock: Callable[[], datetime] = field(default=_utcnow)
    log: logging.Logger = field(default_factory=lambda: logger)

    def resolve_active_model(self, model_id_or_slug: str) -> ResolvedModel:
        resolved = self.catalog.resolve_model(model_id_or_slug)
        if resolved is None:
            raise ModelNotFoundError(f"Model '{model_id_or_slug}' not found")
        if not resolved.is_active:
            raise ModelInactiveError(f"Model '{resolved.model.slug}' is not active")
        if not resolved.provider_is_active:
            raise ModelInactiveError(f"Provider '{resolved.provider.slug}' is not active")
        return resolved

    async def submit_generation(
        self,
        *,
        model_id: str,
        prompt: str,
        parameters: dict[str, Any] | None = None,
        input_images: Sequence[str] | None = None,
        number_of_outputs: int | None = None,
    ) -> SubmissionOutcome:
        resolved = self.resolve_active_model(model_id)
        validated = self.validator.validate_parameters(resolved.model.slug, parameters)
        task = await asyncio.to_thread(
            self.task_manager.create_task,
            model_id=resolved.model.id,
            prompt=prompt,
            parameters=validated,
            input_images=input_images,
            number_of_outputs=number_of_outputs or resolved.model.default_outputs,
        )

        secrets: tuple[str, ...] = ()
        try:
            adapter = self.adapter_factory(adapter_config_for(resolved))
        except UnknownAdapterError as exc:
            self.log.error(
                "generation.adapter.unknown",
                extra={"task_id": task.id, "adapter": exc.adapter_name},
            )
            return await self._fail(task.id, str(exc))

        try:
            secrets = adapter.secrets
            return await self._dispatch(task, resolved, adapter)
        except asyncio.CancelledError:
            await asyncio.shield(
                self._fail(task.id, "Request cancelled before dispatch completed")
            )
            raise
        except GenerationError as exc:
            self.log.warning(
                "generation.dispatch.failed",
                extra={"task_id": task.id, "error": str(exc)},
            )
            return await self._fail(task.id, str(exc), secrets=secrets)
        except Exception as exc:
            self.log.exception("generation.dispatch.crashed", extra={"task_id": task.id})
            error = ProviderDispatchError(f"Provider dispatch failed: {exc}")
            return await self._fail(task.id, str(error), secrets=secrets)

    async def _dispatch(
        self,
        task: GenerationTask,
        resolved: ResolvedModel,
        adapter: ProviderAdapter,
    ) -> SubmissionOutcome:
        dispatched_at = self.clock()
        started = await asyncio.to_thread(
            self.task_manager.update_task,
            task.id,
            TaskUpdate(status=TaskStatus.PROCESSING, dispatched_at=dispatched_at),
        )
        if not started.applied:
            return SubmissionOutcome(task=started.task, message="Task was closed before dispatch")

        self.log.info(
            "generation.dispatch.start",
            extra={"task_id": task.id, "adapter": resolved.model.adapter_name},
        )
        request = GenerationRequest(
            prompt=task.prompt,
            input_images=list(task.input_images),
            number_of_outputs=task.number_of_outputs,
            parameters=dict(task.parameters),
        )
        result = await adapter.dispatch(request)
        policy = storage_policy_for(resolved, self.default_storage_prefix)

        if isinstance(result, DispatchSuccess):
            return await self._complete(task, resolved, result, policy)
        if isinstance(result, DispatchInProgress):
            return await self._hand_off(task, resolved, adapter, result, policy, dispatched_at)
        if isinstance(result, DispatchError):
            return await self._fail(task.id, result.message, secrets=adapter.secrets)
        raise ProviderDispatchError(f"Unexpected dispatch result {type(result).__name__}")

    async def _complete(
        self,
        task: GenerationTask,
        resolved: ResolvedModel,
        result: DispatchSuccess,
        policy: StoragePolicy,
    ) -> SubmissionOutcome:
        results = await self.result_storage.process_results(result.results, policy, task_id=task.id)
        outcome = await asyncio.to_thread(
            self.task_manager.update_task,
            task.id,
            TaskUpdate(status=TaskStatus.SUCCESS, results=results),
        )
        if outcome.applied:
            await asyncio.to_thread(self.task_manager.increment_model_usage, resolved.model.id)
        return SubmissionOutcome(task=outcome.task, message=result.message or "Generation completed")

    async def _hand_off(
        self,
        task: GenerationTask,
        resolved: ResolvedModel,
        adapter: ProviderAdapter,
        result: DispatchInProgress,
        policy: StoragePolicy,
        dispatched_at: datetime,
    ) -> SubmissionOutcome:
        if not result.provider_task_id:
            return await self._fail(task.id, "Provider did not return a task id")
        if not adapter.supports_polling:
            return await self._fail(
                task.id,
                f"Adapter '{resolved.model.adapter_name}' returned an in-progress result but does not support polling",
            )
        if self.poller_pool is None:
            return await self._fail(task.id, "Background polling is not available")

        outcome = await asyncio.to_thread(
            self.task_manager.update_task,
            task.id,
            TaskUpdate(
                status=TaskStatus.PROCESSING,
                provider_task_id=result.provider_task_id,
                progress=result.progress,
            ),
        )
        if not outcome.applied:
            return SubmissionOutcome(task=outcome.task, message="Task was closed during dispatch")

        self.poller_pool.submit(
            PollJob(
                task_id=task.id,
                model_id=resolved.model.id,
                provider_task_id=result.provider_task_id,
                adapter_config=adapter.config,
                dispatched_at=dispatched_at,
                storage_policy=policy,
            )
        )
        self.log.info(
            "generation.dispatch.in_progress",
            extra={"task_id": task.id, "provider_task_id": result.provider_task_id},
        )
        return SubmissionOutcome(
            task=outcome.task,
            message=result.message or "Task submitted, polling in background",
        )

    async def _fail(
        self,
        task_id: str,
        message: str,
        *,
        secrets: Sequence[str] = (),
    ) -> SubmissionOutcome:
        error_message = sanitize_error_message(message, secrets=secrets)
        outcome = await asyncio.to_thread(
            self.task_manager.update_task,
            task_id,
            TaskUpdate(status=TaskStatus.FAILED, error_message=error_message),
        )
        return SubmissionOutcome(
            task=outcome.task,
            message=outcome.task.error_message or error_message,
        )

    async def resume_in_flight(self) -> int:
        """Re-submit polls for PROCESSING tasks persisted with a provider task id."""
        if self.poller_pool is None:
            return 0
        tasks = await asyncio.to_thread(self.task_manager.list_resumable)
        resumed = 0
        for task in tasks:
            resolved = self.catalog.resolve_model(task.model_id)
            if resolved is None:
                await self._fail(task.id, f"Model '{task.model_id}' is no longer available")
                continue
            self.poller_pool.submit(
                PollJob(
                    task_id=task.id,
                    model_id=task.model_id,
                    provider_task_id=task.provider_task_id or "",
                    adapter_config=adapter_config_for(resolved),
                    dispatched_at=task.dispatched_at or task.created_at,
                    storage_policy=storage_policy_for(resolved, self.default_storage_prefix),
                )
            )
            resumed += 1
        self.log.info("generation.poll.resumed", extra={"count": resumed})
        return resumed

    def get_task(self, task_id: str) -> GenerationTask:
        return self.task_manager.get_task(task_id)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        model_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> TaskPage:
        return self.task_manager.list_tasks(
            TaskFilter(status=status, model_id=model_id),
            limit=limit,
            offset=offset,
        )

    def cancel_task(self, task_id: str) -> TaskUpdateOutcome:
        return self.task_manager.cancel_task(task_id)

    def delete_task(self, task_id: str) -> None:
        self.task_manager.delete_task(task_id)

    @staticmethod
    def adapter_names() -> list[str]:
        return available_adapters()
