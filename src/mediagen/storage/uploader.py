"""Retrying object storage uploader."""

from __future__ import annotations

import asyncio
import base64
import logging
import random
import re
import secrets
import socket
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote_to_bytes, urlparse

import httpx
from botocore import exceptions as botocore_exc

from ..config import UploadRetryPolicy
from ..generation.generation_errors import UploadError
from .object_store import ObjectStore

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"

NON_RETRYABLE_CODES = frozenset(
    {
        "AccessDenied",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "NoSuchKey",
        "NoSuchBucket",
        "ExpiredToken",
        "InvalidToken",
    }
)
RETRYABLE_CODES = frozenset(
    {
        "RequestTimeout",
        "RequestTimeTooSkewed",
        "SlowDown",
        "ServiceUnavailable",
        "InternalError",
        "Throttling",
        "ThrottlingException",
        "ECONNRESET",
        "ECONNREFUSED",
        "ETIMEDOUT",
        "ENOTFOUND",
        "EAI_AGAIN",
        "EPIPE",
    }
)
NON_RETRYABLE_STATUSES = frozenset({401, 403, 404})
NON_RETRYABLE_KEYWORDS = (
    "credentials",
    "access denied",
    "forbidden",
    "permission",
    "not found",
    "nosuchkey",
    "no such key",
    "403",
    "404",
)
RETRYABLE_KEYWORDS = (
    "timeout",
    "timed out",
    "socket",
    "network",
    "econnreset",
    "epipe",
    "connection reset",
)
RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    botocore_exc.EndpointConnectionError,
    botocore_exc.ConnectTimeoutError,
    botocore_exc.ReadTimeoutError,
    botocore_exc.ConnectionClosedError,
    httpx.TimeoutException,
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
    socket.gaierror,
)
NON_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    FileNotFoundError,
    IsADirectoryError,
    PermissionError,
    botocore_exc.NoCredentialsError,
    botocore_exc.PartialCredentialsError,
)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "audio/mpeg": "mp3",
}


def detect_content_type(data: bytes) -> str:
    """Sniff the MIME type from leading magic bytes."""
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"GIF"):
        return "image/gif"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:8] == b"ftyp":
        return "video/mp4"
    return OCTET_STREAM


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type.split(";")[0].strip().lower(), "bin")


def build_storage_key(prefix: str, extension: str, *, epoch_ms: int, token: str) -> str:
    """``<prefix>/<epoch_ms>_<token>.<ext>`` with redundant slashes removed."""
    clean_prefix = prefix.strip("/")
    name = f"{epoch_ms}_{token}.{extension.lstrip('.')}"
    return f"{clean_prefix}/{name}" if clean_prefix else name


def _error_code_and_status(exc: BaseException) -> tuple[str | None, int | None]:
    if isinstance(exc, botocore_exc.ClientError):
        error = exc.response.get("Error", {})
        metadata = exc.response.get("ResponseMetadata", {})
        return error.get("Code"), metadata.get("HTTPStatusCode")
    if isinstance(exc, httpx.HTTPStatusError):
        return None, exc.response.status_code
    code = getattr(exc, "code", None)
    status = getattr(exc, "status_code", None)
    return (str(code) if code is not None else None), (status if isinstance(status, int) else None)


def is_retryable_upload_error(exc: BaseException) -> bool:
    """Classify an upload failure.

    Explicit non-retryable signals win over retryable ones; anything not
    recognised is treated as transient.
    """
    if isinstance(exc, NON_RETRYABLE_TYPES):
        return False
    code, status = _error_code_and_status(exc)
    if code in NON_RETRYABLE_CODES or status in NON_RETRYABLE_STATUSES:
        return False
    if code in RETRYABLE_CODES:
        return True
    if status is not None and (status in (408, 429) or status >= 500):
        return True
    if isinstance(exc, RETRYABLE_TYPES):
        return True

    message = str(exc).lower()
    if any(keyword in message for keyword in NON_RETRYABLE_KEYWORDS):
        return False
    if any(keyword in message for keyword in RETRYABLE_KEYWORDS):
        return True
    return True


def base_backoff_delay(attempt: int, policy: UploadRetryPolicy) -> float:
    """Delay after failed ``attempt`` (1-based) before jitter."""
    return min(policy.max_delay_seconds, policy.base_delay_seconds * 2 ** (attempt - 1))


def compute_backoff_delay(attempt: int, policy: UploadRetryPolicy, rng: random.Random) -> float:
    jitter = rng.uniform(-policy.jitter_ratio, policy.jitter_ratio)
    raw = policy.base_delay_seconds * 2 ** (attempt - 1) * (1 + jitter)
    return max(0.0, min(policy.max_delay_seconds, raw))


def decode_data_url(url: str) -> tuple[bytes, str | None]:
    """Decode a ``data:`` URL into bytes and its declared media type."""
    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:"):
        raise ValueError("malformed data URL")
    meta = header[len("data:"):]
    is_base64 = meta.endswith(";base64")
    if is_base64:
        meta = meta[: -len(";base64")]
    media_type = meta.split(";")[0] or None
    if is_base64:
        return base64.b64decode(payload, validate=False), media_type
    return unquote_to_bytes(payload), media_type


def extension_from_url(url: str) -> str | None:
    if url.startswith("data:"):
        return None
    match = re.search(r"\.([A-Za-z0-9]{1,5})$", urlparse(url).path)
    return match.group(1).lower() if match else None


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True, frozen=True)
class UploadReceipt:
    url: str
    key: str
    size_bytes: int
    content_type: str
    attempts: int


@dataclass(slots=True)
class ObjectStoreUploader:
    """Upload artifacts with exponential backoff and jitter.

    The blocking store call runs in a worker thread; backoff sleeps are
    plain awaits so no lock is held between attempts.
    """

    store: ObjectStore
    policy: UploadRetryPolicy = field(default_factory=UploadRetryPolicy)
    default_prefix: str = "ai-generation"
    download_timeout_seconds: float = 30.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)
    epoch_ms: Callable[[], int] = _epoch_ms
    log: logging.Logger = field(default_factory=lambda: logger)

    async def upload_bytes(
        self,
        data: bytes,
        *,
        prefix: str | None = None,
        content_type: str | None = None,
        extension: str | None = None,
    ) -> UploadReceipt:
        content_type = content_type or detect_content_type(data)
        key = build_storage_key(
            prefix if prefix is not None else self.default_prefix,
            extension or extension_for(content_type),
            epoch_ms=self.epoch_ms(),
            token=secrets.token_hex(8),
        )
        attempts = await self._put_with_retry(key=key, data=data, content_type=content_type)
        url = self.store.public_url(key)
        self.log.info(
            "uploader.upload.done",
            extra={"key": key, "size_bytes": len(data), "attempts": attempts},
        )
        return UploadReceipt(
            url=url,
            key=key,
            size_bytes=len(data),
            content_type=content_type,
            attempts=attempts,
        )

    async def upload_file(
        self,
        path: Path,
        *,
        prefix: str | None = None,
        content_type: str | None = None,
    ) -> UploadReceipt:
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise UploadError(f"Cannot read {path.name}: {exc.strerror or exc}", attempts=0, retryable=False) from exc
        extension = path.suffix.lstrip(".") or None
        return await self.upload_bytes(data, prefix=prefix, content_type=content_type, extension=extension)

    async def upload_from_url(
        self,
        url: str,
        *,
        prefix: str | None = None,
        extension: str | None = None,
        fallback_content_type: str | None = None,
    ) -> UploadReceipt:
        """Fetch ``url`` (``http(s)`` or ``data:``) and re-host its bytes."""
        data, declared_type = await self._download(url)
        content_type = detect_content_type(data)
        if content_type == OCTET_STREAM:
            content_type = declared_type or fallback_content_type or OCTET_STREAM
        return await self.upload_bytes(
            data,
            prefix=prefix,
            content_type=content_type,
            extension=extension or extension_from_url(url),
        )

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.store.delete_object, key)

    async def _download(self, url: str) -> tuple[bytes, str | None]:
        if url.startswith("data:"):
            try:
                return decode_data_url(url)
            except ValueError as exc:
                raise UploadError(f"Invalid data URL: {exc}", attempts=0, retryable=False) from exc
        try:
            async with httpx.AsyncClient(
                timeout=self.download_timeout_seconds,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise UploadError(
                f"Failed to download artifact: {exc}",
                attempts=0,
                retryable=is_retryable_upload_error(exc),
            ) from exc
        except (httpx.InvalidURL, ValueError) as exc:
            # httpx.InvalidURL does not derive from httpx.HTTPError
            raise UploadError(f"Invalid artifact URL: {exc}", attempts=0, retryable=False) from exc
        if response.status_code != 200:
            raise UploadError(
                f"Failed to download artifact: status {response.status_code}",
                attempts=0,
                retryable=response.status_code in (408, 429) or response.status_code >= 500,
            )
        header = response.headers.get("Content-Type")
        return response.content, (header.split(";")[0].strip() if header else None)

    async def _put_with_retry(self, *, key: str, data: bytes, content_type: str) -> int:
        attempt = 0
        while True:
            attempt += 1
            try:
                await asyncio.to_thread(
                    self.store.put_object,
                    key=key,
                    body=data,
                    content_type=content_type,
                )
                return attempt
            except Exception as exc:
                retryable = is_retryable_upload_error(exc)
                if not retryable:
                    self.log.error(
                        "uploader.upload.rejected",
                        extra={"key": key, "attempt": attempt, "error": str(exc)},
                    )
                    raise UploadError(
                        f"Upload rejected: {exc}", attempts=attempt, retryable=False
                    ) from exc
                if attempt >= self.policy.max_attempts:
                    self.log.error(
                        "uploader.upload.exhausted",
                        extra={"key": key, "attempts": attempt, "error": str(exc)},
                    )
                    raise UploadError(
                        f"Upload failed after {attempt} attempts: {exc}",
                        attempts=attempt,
                        retryable=True,
                    ) from exc
                delay = compute_backoff_delay(attempt, self.policy, self.rng)
                self.log.warning(
                    "uploader.retry",
                    extra={"key": key, "attempt": attempt, "delay_seconds": round(delay, 3), "error": str(exc)},
                )
                await self.sleep(delay)
