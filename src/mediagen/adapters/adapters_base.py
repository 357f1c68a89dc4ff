"""Uniform provider adapter interface."""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from ..generation.generation_errors import ProviderPollError
from ..tasks.task_models import GenerationResult

API_KEY_ENV_TEMPLATE = "MEDIAGEN_PROVIDER_{slug}_API_KEY"


@dataclass(slots=True, frozen=True)
class ProviderConnection:
    """Endpoint, credential and free-form extras of one provider."""

    slug: str
    api_key: str | None = None
    api_endpoint: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def resolve_api_key(self, environ: Mapping[str, str] | None = None) -> str:
        """Configured key first, then ``MEDIAGEN_PROVIDER_<SLUG>_API_KEY``."""
        if self.api_key:
            return self.api_key
        env = os.environ if environ is None else environ
        name = API_KEY_ENV_TEMPLATE.format(slug=re.sub(r"[^A-Z0-9]", "_", self.slug.upper()))
        return env.get(name, "")


@dataclass(slots=True, frozen=True)
class AdapterConfig:
    adapter_name: str
    model_slug: str
    provider: ProviderConnection
    output_type: str = "image"


@dataclass(slots=True)
class GenerationRequest:
    prompt: str
    input_images: list[str] = field(default_factory=list)
    number_of_outputs: int = 1
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DispatchSuccess:
    results: list[GenerationResult]
    message: str | None = None


@dataclass(slots=True)
class DispatchInProgress:
    provider_task_id: str
    progress: float | None = None
    message: str | None = None


@dataclass(slots=True)
class DispatchError:
    message: str
    retryable: bool = False


DispatchResult = Union[DispatchSuccess, DispatchInProgress, DispatchError]


class ProviderAdapter(ABC):
    """Translate a :class:`GenerationRequest` into one provider's API.

    Adapters that answer with :class:`DispatchInProgress` set
    ``supports_polling`` and implement :meth:`check_status`. They may also
    declare their own poll budget; ``None`` falls back to the global policy.

    ``check_status`` returns :class:`DispatchError` when the provider reports
    a failed generation and raises when the status could not be fetched.
    """

    supports_polling: ClassVar[bool] = False
    poll_interval_seconds: ClassVar[float | None] = None
    max_poll_duration_seconds: ClassVar[float | None] = None
    default_api_endpoint: ClassVar[str] = ""

    config: AdapterConfig

    @abstractmethod
    async def dispatch(self, request: GenerationRequest) -> DispatchResult:
        """Start a generation."""

    async def check_status(self, provider_task_id: str) -> DispatchResult:
        raise ProviderPollError(
            f"Adapter '{self.config.adapter_name}' does not support status checks"
        )

    @property
    def api_key(self) -> str:
        return self.config.provider.resolve_api_key()

    @property
    def api_endpoint(self) -> str:
        return (self.config.provider.api_endpoint or self.default_api_endpoint).rstrip("/")

    @property
    def secrets(self) -> tuple[str, ...]:
        """Values that must never appear in stored error messages."""
        key = self.api_key
        return (key,) if key else ()

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}


def error_message_from_body(body: Any, fallback: str) -> str:
    """Pull a human readable message out of a provider error payload."""
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        for key in ("error", "detail", "msg", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback
