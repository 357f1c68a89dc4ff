"""Background status polling for asynchronous provider tasks."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog

from ..adapters.adapters_base import (
    AdapterConfig,
    DispatchError,
    DispatchInProgress,
    DispatchSuccess,
    ProviderAdapter,
)
from ..adapters.adapters_factory import create_adapter
from ..config import PollingPolicy
from ..exceptions import NotFoundError
from ..generation.generation_errors import (
    GenerationError,
    PollTimeoutError,
    ProviderPollError,
    sanitize_error_message,
)
from ..logging import bind_task_context, clear_task_context
from ..storage.result_storage import ResultStorageService, StoragePolicy
from ..tasks.task_manager import TaskManager
from ..tasks.task_models import TaskStatus, TaskUpdate

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class PollJob:
    """Everything needed to (re)start polling one task."""

    task_id: str
    model_id: str
    provider_task_id: str
    adapter_config: AdapterConfig
    dispatched_at: datetime
    storage_policy: StoragePolicy = StoragePolicy()


def _wrap_sleep(sleep: Callable[[float], Any] | None) -> Callable[[float], Awaitable[None]]:
    if sleep is None:
        return asyncio.sleep

    async def _async_sleep(seconds: float) -> None:
        result = sleep(seconds)
        if inspect.isawaitable(result):
            await result

    return _async_sleep


class AsyncTaskPoller:
    """Drive one asynchronous task to a terminal state.

    Each tick sleeps, re-reads the task (stopping if it was deleted or closed
    elsewhere), then asks the adapter for the provider status. The wall-clock
    budget is measured from ``PollJob.dispatched_at``.
    """

    def __init__(
        self,
        *,
        task_manager: TaskManager,
        result_storage: ResultStorageService,
        policy: PollingPolicy | None = None,
        adapter_factory: Callable[[AdapterConfig], ProviderAdapter] = create_adapter,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.task_manager = task_manager
        self.result_storage = result_storage
        self.policy = policy or PollingPolicy()
        self._adapter_factory = adapter_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = _wrap_sleep(sleep)
        self._logger = logger

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    def interval_for(self, adapter: ProviderAdapter) -> float:
        return adapter.poll_interval_seconds or self.policy.interval_seconds

    def max_duration_for(self, adapter: ProviderAdapter) -> float:
        return adapter.max_poll_duration_seconds or self.policy.max_duration_seconds

    async def run(self, job: PollJob) -> TaskStatus | None:
        """Poll until the task is closed; return the status this run wrote."""

        bind_task_context(job.task_id, provider_task_id=job.provider_task_id)
        try:
            adapter = self._adapter_factory(job.adapter_config)
            return await self._poll(job, adapter)
        except asyncio.CancelledError:
            self._logger.info("poller.task.cancelled")
            raise
        except Exception as exc:
            self._logger.exception("poller.task.crashed")
            message = str(exc) if isinstance(exc, GenerationError) else f"Polling failed: {exc}"
            return await self._fail(job, message, secrets=())
        finally:
            clear_task_context()

    async def _poll(self, job: PollJob, adapter: ProviderAdapter) -> TaskStatus | None:
        interval = self.interval_for(adapter)
        max_duration = self.max_duration_for(adapter)
        consecutive_errors = 0
        ticks = 0
        self._logger.info(
            "poller.task.started",
            interval_seconds=interval,
            max_duration_seconds=max_duration,
        )

        while True:
            await self._sleep(interval)
            ticks += 1
            task = await self._run_sync(self.task_manager.find_task, job.task_id)
            if task is None or task.is_terminal:
                self._logger.info(
                    "poller.task.stopped",
                    status=task.status.value if task else "DELETED",
                    ticks=ticks,
                )
                return None

            try:
                result = await adapter.check_status(job.provider_task_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                consecutive_errors += 1
                self._logger.warning(
                    "poller.check_status.failed",
                    consecutive_errors=consecutive_errors,
                    error=str(exc),
                )
                if consecutive_errors >= self.policy.max_consecutive_errors:
                    error = ProviderPollError(
                        f"Status check failed {consecutive_errors} times in a row: {exc}"
                    )
                    return await self._fail(job, str(error), secrets=adapter.secrets)
                if self._elapsed(job) >= max_duration:
                    return await self._timeout(job, max_duration)
                continue
            consecutive_errors = 0

            if isinstance(result, DispatchInProgress):
                if self._elapsed(job) >= max_duration:
                    return await self._timeout(job, max_duration)
                if result.progress is not None:
                    await self._run_sync(
                        self.task_manager.update_task,
                        job.task_id,
                        TaskUpdate(status=TaskStatus.PROCESSING, progress=result.progress),
                    )
                continue
            if isinstance(result, DispatchSuccess):
                return await self._complete(job, result)
            if isinstance(result, DispatchError):
                return await self._fail(job, result.message, secrets=adapter.secrets)
            raise ProviderPollError(f"Unexpected status result {type(result).__name__}")

    def _elapsed(self, job: PollJob) -> float:
        return (self._clock() - job.dispatched_at).total_seconds()

    async def _complete(self, job: PollJob, result: DispatchSuccess) -> TaskStatus | None:
        results = await self.result_storage.process_results(
            result.results,
            job.storage_policy,
            task_id=job.task_id,
        )
        outcome = await self._run_sync(
            self.task_manager.update_task,
            job.task_id,
            TaskUpdate(status=TaskStatus.SUCCESS, results=results, completed_at=self._clock()),
        )
        if not outcome.applied:
            self._logger.info(
                "poller.task.lost_race",
                status=outcome.task.status.value,
            )
            return None
        await self._run_sync(self.task_manager.increment_model_usage, job.model_id)
        self._logger.info(
            "poller.task.succeeded",
            results=len(results),
            duration_ms=outcome.task.duration_ms,
        )
        return TaskStatus.SUCCESS

    async def _timeout(self, job: PollJob, max_duration: float) -> TaskStatus | None:
        error = PollTimeoutError(
            f"Generation timed out after {max_duration:g}s waiting for provider task {job.provider_task_id}"
        )
        self._logger.warning(
            "poller.task.timeout",
            max_duration_seconds=max_duration,
        )
        return await self._fail(job, str(error), secrets=())

    async def _fail(self, job: PollJob, message: str, *, secrets: tuple[str, ...]) -> TaskStatus | None:
        try:
            outcome = await self._run_sync(
                self.task_manager.update_task,
                job.task_id,
                TaskUpdate(
                    status=TaskStatus.FAILED,
                    error_message=sanitize_error_message(message, secrets=secrets),
                    completed_at=self._clock(),
                ),
            )
        except NotFoundError:
            self._logger.info("poller.task.deleted")
            return None
        if not outcome.applied:
            return None
        self._logger.info(
            "poller.task.failed",
            duration_ms=outcome.task.duration_ms,
        )
        return TaskStatus.FAILED


class PollerPool:
    """Bounded set of background poll runs that outlive the submitting request."""

    def __init__(self, poller: AsyncTaskPoller, *, max_concurrency: int = 64) -> None:
        self.poller = poller
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: set[asyncio.Task[TaskStatus | None]] = set()
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def submit(self, job: PollJob) -> asyncio.Task[TaskStatus | None]:
        if self._closed:
            raise RuntimeError("PollerPool is shut down")
        task = asyncio.create_task(self._run(job), name=f"poll-{job.task_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(
            "poller.pool.submitted",
            task_id=job.task_id,
            active=len(self._tasks),
        )
        return task

    async def _run(self, job: PollJob) -> TaskStatus | None:
        async with self._semaphore:
            return await self.poller.run(job)

    async def wait_idle(self) -> None:
        """Wait for every submitted poll run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop accepting work and cancel running polls.

        Cancelled tasks stay PROCESSING and are picked up again on the next
        start through their persisted provider task id.
        """
        self._closed = True
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("poller.pool.shutdown", cancelled=len(pending))
