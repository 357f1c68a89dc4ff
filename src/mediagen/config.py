"""Application configuration builder."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .core.config import GenerationSettings
from .db.db_init import init_db


@dataclass(slots=True, frozen=True)
class PollingPolicy:
    interval_seconds: float = 5.0
    max_duration_seconds: float = 30 * 60
    max_consecutive_errors: int = 3


@dataclass(slots=True, frozen=True)
class UploadRetryPolicy:
    max_attempts: int = 5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 60.0
    jitter_ratio: float = 0.25


@dataclass(slots=True, frozen=True)
class ObjectStoreSettings:
    bucket: str
    region: str
    endpoint_url: str | None = None
    public_base_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    default_prefix: str = "ai-generation"

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket)


@dataclass(slots=True)
class AppConfig:
    database_url: str
    engine: Engine
    session_factory: sessionmaker[Session]
    catalog_path: Path
    polling: PollingPolicy
    upload_retry: UploadRetryPolicy
    object_store: ObjectStoreSettings
    download_timeout_seconds: float
    poller_max_concurrency: int


def polling_policy_from(settings: GenerationSettings) -> PollingPolicy:
    return PollingPolicy(
        interval_seconds=settings.poll_interval_seconds,
        max_duration_seconds=settings.poll_max_duration_seconds,
        max_consecutive_errors=settings.poll_max_consecutive_errors,
    )


def upload_retry_policy_from(settings: GenerationSettings) -> UploadRetryPolicy:
    return UploadRetryPolicy(
        max_attempts=settings.upload_max_attempts,
        base_delay_seconds=settings.upload_base_delay_seconds,
        max_delay_seconds=settings.upload_max_delay_seconds,
        jitter_ratio=settings.upload_jitter_ratio,
    )


def object_store_settings_from(settings: GenerationSettings) -> ObjectStoreSettings:
    return ObjectStoreSettings(
        bucket=settings.storage_bucket,
        region=settings.storage_region,
        endpoint_url=settings.storage_endpoint_url,
        public_base_url=settings.storage_public_base_url,
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
        default_prefix=settings.storage_default_prefix,
    )


def load_config(settings: GenerationSettings | None = None) -> AppConfig:
    """Load configuration from environment (SQLite by default) and prepare the schema."""
    settings = settings or GenerationSettings.build_default()

    engine = create_engine(settings.database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)

    init_db(engine)

    return AppConfig(
        database_url=settings.database_url,
        engine=engine,
        session_factory=session_factory,
        catalog_path=settings.catalog_path,
        polling=polling_policy_from(settings),
        upload_retry=upload_retry_policy_from(settings),
        object_store=object_store_settings_from(settings),
        download_timeout_seconds=settings.download_timeout_seconds,
        poller_max_concurrency=settings.poller_max_concurrency,
    )
