"""Domain-specific exceptions for the generation pipeline."""

from __future__ import annotations

import re
from collections.abc import Iterable

from ..exceptions import AppError

MAX_ERROR_MESSAGE_LENGTH = 500


class GenerationError(AppError):
    """Base class for generation-related errors."""


class ValidationError(GenerationError):
    """Raised for bad input: empty prompt, unknown model, invalid parameters."""

    def __init__(self, message: str, *, details: list[dict[str, object]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ModelNotFoundError(ValidationError):
    """Raised when the catalog has no model for the given id or slug."""


class ModelInactiveError(ValidationError):
    """Raised when the model or its provider is disabled in the catalog."""


class UnknownAdapterError(GenerationError):
    """Raised when no adapter is registered under the declared name."""

    def __init__(self, adapter_name: str, available: Iterable[str] = ()) -> None:
        names = ", ".join(sorted(available))
        super().__init__(f"Unknown adapter '{adapter_name}'. Available adapters: {names}")
        self.adapter_name = adapter_name


class ProviderDispatchError(GenerationError):
    """Raised when the provider rejects or errors on the initial call."""


class ProviderPollError(GenerationError):
    """Raised when status checks keep failing for an asynchronous task."""


class PollTimeoutError(GenerationError):
    """Raised when an asynchronous task exceeds its wall-clock budget."""


class UploadError(GenerationError):
    """Raised by the object store uploader once retries are exhausted."""

    def __init__(self, message: str, *, attempts: int, retryable: bool) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.retryable = retryable


_BEARER_RE = re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+")


def sanitize_error_message(message: str, *, secrets: Iterable[str | None] = ()) -> str:
    """Strip credentials from ``message`` and bound its length for storage."""

    cleaned = message
    for secret in secrets:
        if secret:
            cleaned = cleaned.replace(secret, "***")
    cleaned = _BEARER_RE.sub(r"\1***", cleaned)
    cleaned = " ".join(cleaned.split())
    if len(cleaned) > MAX_ERROR_MESSAGE_LENGTH:
        cleaned = cleaned[: MAX_ERROR_MESSAGE_LENGTH - 3] + "..."
    return cleaned or "Generation failed"
