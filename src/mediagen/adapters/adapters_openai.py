"""OpenAI image generation adapter (synchronous)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx

from ..tasks.task_models import GenerationResult
from .adapters_base import (
    AdapterConfig,
    DispatchError,
    DispatchResult,
    DispatchSuccess,
    GenerationRequest,
    ProviderAdapter,
    error_message_from_body,
)

logger = logging.getLogger(__name__)

DALLE3_SIZES = ("1024x1024", "1024x1792", "1792x1024")


def map_size_to_dalle(value: str | None) -> str:
    """Map ``WxH`` or ``W:H`` onto the closest size DALL-E 3 accepts."""
    if not value:
        return "1024x1024"
    if value in DALLE3_SIZES:
        return value
    for separator in (":", "x", "X"):
        if separator in value:
            width, _, height = value.partition(separator)
            try:
                ratio = float(width) / float(height)
            except (ValueError, ZeroDivisionError):
                break
            if ratio > 1.5:
                return "1792x1024"
            if ratio < 0.7:
                return "1024x1792"
            return "1024x1024"
    return "1024x1024"


@dataclass(slots=True)
class OpenAIImageAdapter(ProviderAdapter):
    """Call ``/v1/images/generations`` and return results in the same request."""

    default_api_endpoint: ClassVar[str] = "https://api.openai.com"

    config: AdapterConfig
    timeout_seconds: float = 120.0
    log: logging.Logger = field(default_factory=lambda: logger)

    async def dispatch(self, request: GenerationRequest) -> DispatchResult:
        if not self.api_key:
            return DispatchError(f"Missing API key for provider '{self.config.provider.slug}'")

        payload = self._build_payload(request)
        self.log.info(
            "openai.request.start",
            extra={"model": payload["model"], "n": payload["n"], "size": payload["size"]},
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.api_endpoint}/v1/images/generations",
                    headers=self.auth_headers(),
                    json=payload,
                )
        except httpx.HTTPError as exc:
            self.log.warning("openai.request.transport_error", extra={"error": str(exc)})
            return DispatchError(f"OpenAI request failed: {exc}", retryable=True)

        try:
            body = response.json()
        except ValueError:
            body = None
        if response.status_code != 200:
            message = error_message_from_body(body, f"OpenAI returned status {response.status_code}")
            self.log.warning(
                "openai.request.failed",
                extra={"status_code": response.status_code},
            )
            return DispatchError(message, retryable=response.status_code >= 500)

        items = (body or {}).get("data") or []
        results = [self._to_result(item) for item in items if item.get("url") or item.get("b64_json")]
        if not results:
            return DispatchError("OpenAI returned no images")
        self.log.info("openai.request.done", extra={"results": len(results)})
        return DispatchSuccess(results=results, message="Generation completed")

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        params = request.parameters
        model = params.get("model") or self.config.provider.extra.get("model") or "dall-e-3"
        count = max(1, request.number_of_outputs)
        payload: dict[str, Any] = {
            "model": model,
            "prompt": request.prompt,
            # dall-e-3 only generates one image per call
            "n": 1 if model == "dall-e-3" else count,
            "size": map_size_to_dalle(params.get("size")) if model == "dall-e-3" else params.get("size", "1024x1024"),
        }
        for name in ("quality", "style"):
            if params.get(name):
                payload[name] = params[name]
        if model.startswith("dall-e"):
            payload["response_format"] = params.get("response_format") or "url"
        return payload

    def _to_result(self, item: dict[str, Any]) -> GenerationResult:
        url = item.get("url") or f"data:image/png;base64,{item['b64_json']}"
        metadata: dict[str, Any] = {}
        if item.get("revised_prompt"):
            metadata["revised_prompt"] = item["revised_prompt"]
        return GenerationResult(type=self.config.output_type, url=url, metadata=metadata)
