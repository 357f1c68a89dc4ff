"""Durable re-hosting of provider results."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..exceptions import RepositoryError
from ..generation.generation_errors import UploadError
from ..repositories.artifact_repository import ArtifactRepository
from ..tasks.task_models import GenerationResult
from .uploader import ObjectStoreUploader, extension_from_url

logger = logging.getLogger(__name__)

_DEFAULT_CONTENT_TYPES = {"image": "image/png", "video": "video/mp4", "audio": "audio/mpeg"}


@dataclass(slots=True, frozen=True)
class StoragePolicy:
    """Provider level re-hosting switch and key prefix."""

    upload_to_storage: bool = False
    storage_prefix: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ResultStorageService:
    """Apply a provider's storage policy to its raw results.

    Only ``url`` is ever rewritten. Results that could not be re-hosted keep
    the provider URL and are marked ``durable=False``.
    """

    artifact_repo: ArtifactRepository
    uploader: ObjectStoreUploader | None = None
    clock: Callable[[], datetime] = field(default=_utcnow)
    log: logging.Logger = field(default_factory=lambda: logger)

    async def process_results(
        self,
        results: Sequence[GenerationResult],
        policy: StoragePolicy,
        *,
        task_id: str | None = None,
    ) -> list[GenerationResult]:
        if not policy.upload_to_storage or self.uploader is None:
            if policy.upload_to_storage:
                self.log.warning(
                    "result_storage.uploader_unavailable",
                    extra={"task_id": task_id, "results": len(results)},
                )
            return [self._keep_raw(result) for result in results]

        processed: list[GenerationResult] = []
        for index, result in enumerate(results):
            processed.append(await self._rehost(self.uploader, result, policy, task_id=task_id, index=index))
        return processed

    async def _rehost(
        self,
        uploader: ObjectStoreUploader,
        result: GenerationResult,
        policy: StoragePolicy,
        *,
        task_id: str | None,
        index: int,
    ) -> GenerationResult:
        try:
            receipt = await uploader.upload_from_url(
                result.url,
                prefix=policy.storage_prefix,
                extension=extension_from_url(result.url),
                fallback_content_type=_DEFAULT_CONTENT_TYPES.get(result.type),
            )
        except UploadError as exc:
            self.log.warning(
                "result_storage.rehost_failed",
                extra={"task_id": task_id, "index": index, "error": str(exc)},
            )
            return self._keep_raw(result)

        try:
            await asyncio.to_thread(
                self.artifact_repo.register,
                task_id=task_id,
                source_url=result.url,
                stored_url=receipt.url,
                storage_key=receipt.key,
                size_bytes=receipt.size_bytes,
                mime_type=receipt.content_type,
                created_at=self.clock(),
            )
        except RepositoryError as exc:
            self.log.warning(
                "result_storage.register_failed",
                extra={"task_id": task_id, "index": index, "storage_key": receipt.key, "error": str(exc)},
            )
            await self._discard(uploader, receipt.key, task_id=task_id)
            return self._keep_raw(result)

        self.log.info(
            "result_storage.rehosted",
            extra={"task_id": task_id, "index": index, "storage_key": receipt.key},
        )
        return GenerationResult(
            type=result.type,
            url=receipt.url,
            metadata=dict(result.metadata),
            durable=True,
        )

    async def _discard(self, uploader: ObjectStoreUploader, key: str, *, task_id: str | None) -> None:
        """Remove an object that has no artifact record; failures are only logged."""
        try:
            await uploader.delete(key)
        except Exception:  # noqa: BLE001
            self.log.warning(
                "result_storage.discard_failed",
                extra={"task_id": task_id, "storage_key": key},
                exc_info=True,
            )

    @staticmethod
    def _keep_raw(result: GenerationResult) -> GenerationResult:
        return GenerationResult(
            type=result.type,
            url=result.url,
            metadata=dict(result.metadata),
            durable=False,
        )
