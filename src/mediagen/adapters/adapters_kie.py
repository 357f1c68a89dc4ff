"""Kie.ai image task adapter (asynchronous, reports progress)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx

from ..generation.generation_errors import ProviderPollError
from ..tasks.task_models import GenerationResult
from .adapters_base import (
    AdapterConfig,
    DispatchError,
    DispatchInProgress,
    DispatchResult,
    DispatchSuccess,
    GenerationRequest,
    ProviderAdapter,
    error_message_from_body,
)

logger = logging.getLogger(__name__)

KIE_RATIOS = {"1:1": 1.0, "3:2": 1.5, "2:3": 2 / 3}
KIE_VARIANTS = (1, 2, 4)
MAX_INPUT_IMAGES = 5
_PASSTHROUGH_PARAMS = ("maskUrl", "isEnhance", "uploadCn", "enableFallback", "fallbackModel", "callBackUrl")


def map_size_to_kie(value: str | None) -> str:
    """Pick the supported aspect ratio closest to ``WxH`` or ``W:H``."""
    if not value:
        return "1:1"
    if value in KIE_RATIOS:
        return value
    for separator in (":", "x"):
        if separator in value:
            width, _, height = value.partition(separator)
            try:
                requested = float(width) / float(height)
            except (ValueError, ZeroDivisionError):
                return "1:1"
            return min(KIE_RATIOS, key=lambda name: abs(KIE_RATIOS[name] - requested))
    return "1:1"


def _parse_progress(raw: Any) -> float | None:
    if raw in (None, ""):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, value))


@dataclass(slots=True)
class KieImageAdapter(ProviderAdapter):
    """Submit to ``/api/v1/gpt4o-image/generate`` and poll ``record-info``."""

    supports_polling: ClassVar[bool] = True
    max_poll_duration_seconds: ClassVar[float | None] = 900.0
    default_api_endpoint: ClassVar[str] = "https://api.kie.ai"

    config: AdapterConfig
    timeout_seconds: float = 60.0
    log: logging.Logger = field(default_factory=lambda: logger)

    async def dispatch(self, request: GenerationRequest) -> DispatchResult:
        if not self.api_key:
            return DispatchError(f"Missing API key for provider '{self.config.provider.slug}'")

        payload = self._build_payload(request)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.api_endpoint}/api/v1/gpt4o-image/generate",
                    headers=self.auth_headers(),
                    json=payload,
                )
        except httpx.HTTPError as exc:
            self.log.warning("kie.create.transport_error", extra={"error": str(exc)})
            return DispatchError(f"Kie request failed: {exc}", retryable=True)

        body = _json_or_none(response)
        if not isinstance(body, dict):
            body = {}
        data = body.get("data")
        task_id = data.get("taskId") if isinstance(data, dict) else None
        if response.status_code != 200 or body.get("code") != 200 or not task_id:
            message = error_message_from_body(body, "Failed to create task")
            self.log.warning(
                "kie.create.failed",
                extra={"status_code": response.status_code},
            )
            return DispatchError(message, retryable=True)

        self.log.info("kie.create.done", extra={"provider_task_id": task_id})
        return DispatchInProgress(provider_task_id=str(task_id), message="Task submitted, polling required")

    async def check_status(self, provider_task_id: str) -> DispatchResult:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(
                f"{self.api_endpoint}/api/v1/gpt4o-image/record-info",
                headers=self.auth_headers(),
                params={"taskId": provider_task_id},
            )
        body = _json_or_none(response)
        if not isinstance(body, dict):
            body = {}
        data = body.get("data")
        if response.status_code != 200 or body.get("code") != 200 or not isinstance(data, dict):
            raise ProviderPollError(
                error_message_from_body(body, f"Kie status check failed with status {response.status_code}")
            )

        status = data.get("status")
        if status == "GENERATING":
            progress = _parse_progress(data.get("progress"))
            return DispatchInProgress(
                provider_task_id=provider_task_id,
                progress=progress,
                message=f"Generating... {round((progress or 0.0) * 100)}%",
            )
        result_urls = (data.get("response") or {}).get("resultUrls") or []
        if status == "SUCCESS" and data.get("successFlag") == 1 and result_urls:
            return DispatchSuccess(
                results=[GenerationResult(type=self.config.output_type, url=str(url)) for url in result_urls],
                message="Generation completed",
            )
        if status in ("CREATE_TASK_FAILED", "GENERATE_FAILED"):
            return DispatchError(str(data.get("errorMessage") or "Generation failed"))
        return DispatchError(str(data.get("errorMessage") or f"Unknown status: {status}"))

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        params = request.parameters
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "size": map_size_to_kie(params.get("size")),
        }
        if request.input_images:
            payload["filesUrl"] = request.input_images[:MAX_INPUT_IMAGES]
        for name in _PASSTHROUGH_PARAMS:
            if params.get(name) is not None:
                payload[name] = params[name]
        variants = params.get("nVariants", request.number_of_outputs)
        try:
            variants = int(variants)
        except (TypeError, ValueError):
            variants = None
        if variants in KIE_VARIANTS:
            payload["nVariants"] = variants
        return payload


def _json_or_none(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
