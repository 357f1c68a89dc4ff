"""Put-object access to S3 compatible storage."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import boto3
from botocore.config import Config

from ..config import ObjectStoreSettings

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    """Minimal blocking object storage contract."""

    def put_object(self, *, key: str, body: bytes, content_type: str) -> None:
        """Store ``body`` under ``key``; raise on failure."""

    def delete_object(self, key: str) -> None:
        """Remove ``key``."""

    def public_url(self, key: str) -> str:
        """Return the publicly reachable URL of ``key``."""


def public_url_for(settings: ObjectStoreSettings, key: str) -> str:
    if settings.public_base_url:
        return f"{settings.public_base_url.rstrip('/')}/{key}"
    if settings.endpoint_url:
        return f"{settings.endpoint_url.rstrip('/')}/{settings.bucket}/{key}"
    return f"https://{settings.bucket}.s3.{settings.region}.amazonaws.com/{key}"


class S3ObjectStore:
    """boto3-backed :class:`ObjectStore`.

    botocore's own retry loop is disabled: retry and backoff belong to
    :class:`~.uploader.ObjectStoreUploader`, which classifies the errors.
    """

    def __init__(self, settings: ObjectStoreSettings, *, client: Any | None = None) -> None:
        if not settings.is_configured:
            raise ValueError("Object storage bucket is not configured")
        self._settings = settings
        self._client = client or boto3.client(
            "s3",
            region_name=settings.region,
            endpoint_url=settings.endpoint_url,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
            config=Config(retries={"total_max_attempts": 1, "mode": "standard"}),
        )

    @property
    def bucket(self) -> str:
        return self._settings.bucket

    def put_object(self, *, key: str, body: bytes, content_type: str) -> None:
        self._client.put_object(
            Bucket=self._settings.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
        )

    def delete_object(self, key: str) -> None:
        self._client.delete_object(Bucket=self._settings.bucket, Key=key)
        logger.info("storage.object.deleted", extra={"key": key})

    def public_url(self, key: str) -> str:
        return public_url_for(self._settings, key)
