"""Replicate predictions adapter (asynchronous)."""

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

_PASSTHROUGH_PARAMS = ("aspect_ratio", "seed", "output_format", "output_quality", "num_outputs")


@dataclass(slots=True)
class ReplicatePredictionAdapter(ProviderAdapter):
    """Create a prediction and poll ``/v1/predictions/{id}`` until it settles."""

    supports_polling: ClassVar[bool] = True
    poll_interval_seconds: ClassVar[float | None] = 3.0
    default_api_endpoint: ClassVar[str] = "https://api.replicate.com"

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
                    f"{self.api_endpoint}/v1/predictions",
                    headers=self.auth_headers(),
                    json=payload,
                )
        except httpx.HTTPError as exc:
            self.log.warning("replicate.create.transport_error", extra={"error": str(exc)})
            return DispatchError(f"Replicate request failed: {exc}", retryable=True)

        body = _json_or_none(response)
        if response.status_code not in (200, 201) or not isinstance(body, dict) or not body.get("id"):
            message = error_message_from_body(body, "Failed to create prediction")
            self.log.warning(
                "replicate.create.failed",
                extra={"status_code": response.status_code},
            )
            return DispatchError(message, retryable=response.status_code >= 500)

        prediction_id = str(body["id"])
        self.log.info("replicate.create.done", extra={"prediction_id": prediction_id})
        if body.get("status") == "succeeded":
            return self._succeeded(body.get("output"))
        return DispatchInProgress(
            provider_task_id=prediction_id,
            message="Prediction submitted, polling required",
        )

    async def check_status(self, provider_task_id: str) -> DispatchResult:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(
                f"{self.api_endpoint}/v1/predictions/{provider_task_id}",
                headers=self.auth_headers(),
            )
        body = _json_or_none(response)
        if response.status_code != 200 or not isinstance(body, dict):
            raise ProviderPollError(
                f"Replicate status check failed with status {response.status_code}"
            )

        status = body.get("status")
        if status == "succeeded":
            return self._succeeded(body.get("output"))
        if status in ("failed", "canceled"):
            return DispatchError(str(body.get("error") or f"Prediction {status}"))
        return DispatchInProgress(
            provider_task_id=provider_task_id,
            message=f"Prediction status: {status}",
        )

    def _build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        params = request.parameters
        model_input: dict[str, Any] = {"prompt": request.prompt}
        for name in _PASSTHROUGH_PARAMS:
            if params.get(name) is not None:
                model_input[name] = params[name]
        if "num_outputs" not in model_input and request.number_of_outputs > 1:
            model_input["num_outputs"] = request.number_of_outputs
        if request.input_images:
            model_input["image"] = request.input_images[0]
        payload: dict[str, Any] = {"input": model_input}
        version = params.get("version") or self.config.provider.extra.get("version")
        if version:
            payload["version"] = version
        return payload

    def _succeeded(self, output: Any) -> DispatchResult:
        results = self._to_results(output) if output else []
        if not results:
            return DispatchError("Prediction succeeded without output")
        return DispatchSuccess(results=results, message="Generation completed")

    def _to_results(self, output: Any) -> list[GenerationResult]:
        urls = output if isinstance(output, list) else [output]
        return [
            GenerationResult(type=self.config.output_type, url=str(url))
            for url in urls
            if url
        ]


def _json_or_none(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
