"""Dependency wiring helpers."""

from __future__ import annotations

from collections.abc import Callable

from fastapi import FastAPI

from .adapters.adapters_base import AdapterConfig, ProviderAdapter
from .adapters.adapters_factory import create_adapter
from .catalog.catalog_service import FileModelCatalog, ModelCatalog
from .catalog.parameter_validation import ParameterValidator, SchemaParameterValidator
from .config import AppConfig
from .generation.generation_api import router as generation_router
from .generation.generation_service import GenerationService
from .repositories.artifact_repository import ArtifactRepository
from .repositories.task_repository import TaskRepository
from .storage.object_store import ObjectStore, S3ObjectStore
from .storage.result_storage import ResultStorageService
from .storage.uploader import ObjectStoreUploader
from .tasks.task_manager import TaskManager
from .workers.task_poller import AsyncTaskPoller, PollerPool


def build_object_store(config: AppConfig) -> ObjectStore | None:
    if not config.object_store.is_configured:
        return None
    return S3ObjectStore(config.object_store)


def include_routers(
    app: FastAPI,
    config: AppConfig,
    *,
    catalog: ModelCatalog | None = None,
    validator: ParameterValidator | None = None,
    object_store: ObjectStore | None = None,
    adapter_factory: Callable[[AdapterConfig], ProviderAdapter] = create_adapter,
) -> None:
    """Build services once, attach them to ``app.state`` and mount routers."""
    catalog = catalog or FileModelCatalog.from_path(config.catalog_path)
    validator = validator or SchemaParameterValidator()
    store = object_store or build_object_store(config)

    task_repo = TaskRepository(config.session_factory)
    artifact_repo = ArtifactRepository(config.session_factory)
    task_manager = TaskManager(task_repo=task_repo, catalog=catalog)
    uploader = (
        ObjectStoreUploader(
            store=store,
            policy=config.upload_retry,
            default_prefix=config.object_store.default_prefix,
            download_timeout_seconds=config.download_timeout_seconds,
        )
        if store is not None
        else None
    )
    result_storage = ResultStorageService(artifact_repo=artifact_repo, uploader=uploader)
    poller = AsyncTaskPoller(
        task_manager=task_manager,
        result_storage=result_storage,
        policy=config.polling,
        adapter_factory=adapter_factory,
    )
    poller_pool = PollerPool(poller, max_concurrency=config.poller_max_concurrency)
    generation_service = GenerationService(
        catalog=catalog,
        validator=validator,
        task_manager=task_manager,
        result_storage=result_storage,
        poller_pool=poller_pool,
        adapter_factory=adapter_factory,
        default_storage_prefix=config.object_store.default_prefix,
    )

    app.state.config = config
    app.state.catalog = catalog
    app.state.task_manager = task_manager
    app.state.artifact_repo = artifact_repo
    app.state.result_storage = result_storage
    app.state.poller_pool = poller_pool
    app.state.generation_service = generation_service

    app.include_router(generation_router)
