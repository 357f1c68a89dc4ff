from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.mediagen.config import PollingPolicy, UploadRetryPolicy
from src.mediagen.db.db_init import init_db
from src.mediagen.repositories.artifact_repository import ArtifactRepository
from src.mediagen.repositories.task_repository import TaskRepository
from src.mediagen.storage.result_storage import ResultStorageService
from src.mediagen.storage.uploader import ObjectStoreUploader
from src.mediagen.tasks.task_manager import TaskManager
from tests.mocks.catalog import make_catalog
from tests.mocks.clock import FakeClock
from tests.mocks.object_store import FakeObjectStore

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory(tmp_path):
    # File database: the poller and the service touch it from worker threads.
    engine = create_engine(f"sqlite:///{tmp_path / 'mediagen.db'}", future=True)
    init_db(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def task_repo(session_factory) -> TaskRepository:
    return TaskRepository(session_factory)


@pytest.fixture
def artifact_repo(session_factory) -> ArtifactRepository:
    return ArtifactRepository(session_factory)


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def task_manager(task_repo, catalog, clock) -> TaskManager:
    return TaskManager(task_repo=task_repo, catalog=catalog, clock=clock)


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def uploader(object_store, sleeps) -> ObjectStoreUploader:
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return ObjectStoreUploader(
        store=object_store,
        policy=UploadRetryPolicy(),
        sleep=record_sleep,
        epoch_ms=lambda: 1767268800000,
    )


@pytest.fixture
def result_storage(artifact_repo, uploader, clock) -> ResultStorageService:
    return ResultStorageService(artifact_repo=artifact_repo, uploader=uploader, clock=clock)


@pytest.fixture
def polling_policy() -> PollingPolicy:
    return PollingPolicy(interval_seconds=5.0, max_duration_seconds=30.0, max_consecutive_errors=3)
