"""Environment-driven settings for the generation service.

Every tunable of the orchestration core is declared here once. Values are
read from ``MEDIAGEN_*`` environment variables (or a ``.env`` file) and turned
into the plain configuration objects consumed by the services in
:func:`mediagen.config.load_config`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GenerationSettings(BaseSettings):
    """Pydantic settings container for the service layer."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite:///mediagen.db",
        description="SQLAlchemy URL of the relational store holding tasks and artifacts.",
    )
    catalog_path: Path = Field(
        default=Path("catalog.json"),
        description="JSON document describing providers and models.",
    )

    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Delay between two status checks of an asynchronous task.",
    )
    poll_max_duration_seconds: float = Field(
        default=30 * 60,
        gt=0,
        description="Wall-clock budget measured from dispatch start before a task times out.",
    )
    poll_max_consecutive_errors: int = Field(
        default=3,
        ge=1,
        description="Transient check_status failures tolerated in a row.",
    )
    poller_max_concurrency: int = Field(
        default=64,
        ge=1,
        description="Upper bound on simultaneously running poll loops.",
    )

    upload_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Total attempts for a single object-store upload.",
    )
    upload_base_delay_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Backoff delay before the second upload attempt.",
    )
    upload_max_delay_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Upper bound for a single backoff delay.",
    )
    upload_jitter_ratio: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Relative random perturbation applied to backoff delays.",
    )
    download_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for fetching provider artifacts before re-hosting.",
    )

    storage_bucket: str = Field(default="", description="Object storage bucket name.")
    storage_region: str = Field(default="us-east-1", description="Object storage region.")
    storage_endpoint_url: str | None = Field(
        default=None,
        description="Custom endpoint for S3-compatible stores.",
    )
    storage_public_base_url: str | None = Field(
        default=None,
        description="Base URL used to build public links; defaults to the AWS virtual-host form.",
    )
    storage_access_key_id: str | None = Field(default=None)
    storage_secret_access_key: str | None = Field(default=None)
    storage_default_prefix: str = Field(default="ai-generation")

    @classmethod
    def build_default(cls) -> "GenerationSettings":
        """Construct settings from the current environment."""

        return cls()


__all__ = ["GenerationSettings"]
