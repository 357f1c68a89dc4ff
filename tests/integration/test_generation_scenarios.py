from __future__ import annotations

import asyncio
import threading

import pytest
from botocore import exceptions as botocore_exc

from src.mediagen.adapters.adapters_base import DispatchInProgress, DispatchSuccess
from src.mediagen.adapters.adapters_factory import create_adapter
from src.mediagen.catalog import SchemaParameterValidator
from src.mediagen.generation.generation_service import GenerationService
from src.mediagen.tasks.task_manager import TaskManager
from src.mediagen.tasks.task_models import GenerationResult, TaskStatus, TaskUpdate
from src.mediagen.workers.task_poller import AsyncTaskPoller, PollerPool
from tests.conftest import START
from tests.mocks.adapters import ScriptedAdapter, SyncOnlyAdapter, factory_for
from tests.mocks.catalog import MODEL_ID, make_catalog
from tests.mocks.http import DummyHTTPResponse, configure_httpx
from tests.mocks.object_store import CDN_BASE_URL

PROVIDER_URL = "https://provider.test/files/render.png"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x02" * 32


@pytest.fixture
def stack(task_repo, result_storage, clock, polling_policy):
    def _stack(adapter_factory, catalog=None) -> GenerationService:
        catalog = catalog or make_catalog()
        task_manager = TaskManager(task_repo=task_repo, catalog=catalog, clock=clock)
        poller = AsyncTaskPoller(
            task_manager=task_manager,
            result_storage=result_storage,
            policy=polling_policy,
            adapter_factory=adapter_factory,
            clock=clock,
            sleep=clock.sleep,
        )
        return GenerationService(
            catalog=catalog,
            validator=SchemaParameterValidator(),
            task_manager=task_manager,
            result_storage=result_storage,
            poller_pool=PollerPool(poller),
            adapter_factory=adapter_factory,
            clock=clock,
        )

    return _stack


@pytest.mark.asyncio
async def test_sync_provider_without_rehosting_keeps_url(stack) -> None:
    adapter = SyncOnlyAdapter(dispatch_result=DispatchSuccess(results=[GenerationResult(type="image", url=PROVIDER_URL)]))
    service = stack(factory_for(adapter))

    outcome = await service.submit_generation(model_id=MODEL_ID, prompt="a harbour at dusk")

    task = service.get_task(outcome.task_id)
    assert task.status is TaskStatus.SUCCESS
    assert [result.url for result in task.results] == [PROVIDER_URL]


@pytest.mark.asyncio
async def test_sync_provider_with_rehosting_after_two_upload_failures(
    monkeypatch, stack, object_store, artifact_repo, sleeps
) -> None:
    configure_httpx(monkeypatch, get_responses=[DummyHTTPResponse(200, content=PNG_BYTES, headers={"Content-Type": "image/png"})])
    object_store.failures = [
        botocore_exc.ClientError({"Error": {"Code": "SlowDown"}, "ResponseMetadata": {"HTTPStatusCode": 503}}, "PutObject"),
        ConnectionResetError("connection reset by peer"),
    ]
    adapter = SyncOnlyAdapter(dispatch_result=DispatchSuccess(results=[GenerationResult(type="image", url=PROVIDER_URL)]))
    service = stack(factory_for(adapter), catalog=make_catalog(upload_to_storage=True, storage_prefix="ai-generation/test"))

    outcome = await service.submit_generation(model_id=MODEL_ID, prompt="p")

    task = service.get_task(outcome.task_id)
    assert task.status is TaskStatus.SUCCESS
    (stored,) = task.results
    assert stored.url.startswith(f"{CDN_BASE_URL}/ai-generation/test/")
    assert stored.durable is True
    assert object_store.put_calls == 3
    assert len(sleeps) == 2
    (artifact,) = artifact_repo.list_for_task(outcome.task_id)
    assert artifact.source_url == PROVIDER_URL
    assert artifact.stored_url == stored.url


@pytest.mark.asyncio
async def test_async_provider_is_polled_to_success(stack) -> None:
    seen: list[tuple[TaskStatus, str | None, object]] = []

    class ObservingAdapter(ScriptedAdapter):
        async def check_status(self, provider_task_id: str):
            task = service.get_task(task_id_holder[0])
            seen.append((task.status, task.provider_task_id, task.completed_at))
            return await ScriptedAdapter.check_status(self, provider_task_id)

    adapter = ObservingAdapter(
        dispatch_result=DispatchInProgress(provider_task_id="abc"),
        status_results=[
            DispatchInProgress(provider_task_id="abc"),
            DispatchInProgress(provider_task_id="abc"),
            DispatchSuccess(results=[GenerationResult(type="image", url=PROVIDER_URL)]),
        ],
    )
    service = stack(factory_for(adapter))
    task_id_holder: list[str] = []

    outcome = await service.submit_generation(model_id=MODEL_ID, prompt="p")
    task_id_holder.append(outcome.task_id)
    assert outcome.status is TaskStatus.PROCESSING
    assert service.get_task(outcome.task_id).provider_task_id == "abc"

    await service.poller_pool.wait_idle()

    assert seen == [(TaskStatus.PROCESSING, "abc", None)] * 3
    task = service.get_task(outcome.task_id)
    assert task.status is TaskStatus.SUCCESS
    assert task.completed_at is not None
    assert task.completed_at > START


@pytest.mark.asyncio
async def test_async_provider_that_never_finishes_times_out(stack, clock) -> None:
    adapter = ScriptedAdapter(status_results=[DispatchInProgress(provider_task_id="abc")])
    service = stack(factory_for(adapter))

    outcome = await service.submit_generation(model_id=MODEL_ID, prompt="p")
    await service.poller_pool.wait_idle()

    task = service.get_task(outcome.task_id)
    assert task.status is TaskStatus.FAILED
    assert "timed out after 30s" in task.error_message
    assert len(adapter.status_calls) == 6


@pytest.mark.asyncio
async def test_unknown_adapter_fails_without_polling(stack) -> None:
    service = stack(create_adapter, catalog=make_catalog(adapter_name="does-not-exist"))

    outcome = await service.submit_generation(model_id=MODEL_ID, prompt="p")

    assert outcome.status is TaskStatus.FAILED
    assert "Unknown adapter 'does-not-exist'" in outcome.message
    assert service.poller_pool.active_count == 0
    await asyncio.sleep(0)
    assert service.get_task(outcome.task_id).status is TaskStatus.FAILED


def test_success_and_cancel_race_has_one_winner(task_manager) -> None:
    result = GenerationResult(type="image", url=PROVIDER_URL)
    for _ in range(20):
        task = task_manager.create_task(model_id=MODEL_ID, prompt="p")
        task_manager.update_task(task.id, TaskUpdate(status=TaskStatus.PROCESSING, provider_task_id="abc"))
        barrier = threading.Barrier(2)
        applied: dict[str, bool] = {}

        def deliver(name: str, update: TaskUpdate) -> None:
            barrier.wait()
            applied[name] = task_manager.update_task(task.id, update).applied

        workers = [
            threading.Thread(target=deliver, args=("success", TaskUpdate(status=TaskStatus.SUCCESS, results=[result]))),
            threading.Thread(target=deliver, args=("cancel", TaskUpdate(status=TaskStatus.CANCELLED))),
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert sorted(applied.values()) == [False, True]
        stored = task_manager.get_task(task.id)
        if applied["success"]:
            assert stored.status is TaskStatus.SUCCESS
            assert [item.url for item in stored.results] == [PROVIDER_URL]
        else:
            assert stored.status is TaskStatus.CANCELLED
            assert stored.results is None
