from __future__ import annotations

import pytest

from src.mediagen.adapters.adapters_base import (
    AdapterConfig,
    DispatchError,
    DispatchInProgress,
    DispatchSuccess,
    GenerationRequest,
    ProviderConnection,
)
from src.mediagen.adapters.adapters_replicate import ReplicatePredictionAdapter
from src.mediagen.generation.generation_errors import ProviderPollError
from tests.mocks.http import DummyHTTPResponse, configure_httpx


def make_adapter() -> ReplicatePredictionAdapter:
    return ReplicatePredictionAdapter(
        config=AdapterConfig(
            adapter_name="replicate-prediction",
            model_slug="flux-pro",
            provider=ProviderConnection(
                slug="replicate",
                api_key="r8-token",
                api_endpoint="https://replicate.test/",
                extra={"version": "v-123"},
            ),
        )
    )


@pytest.mark.asyncio
async def test_dispatch_creates_prediction(monkeypatch) -> None:
    calls = configure_httpx(
        monkeypatch,
        post_responses=[DummyHTTPResponse(201, json_data={"id": "pred-1", "status": "starting"})],
    )

    result = await make_adapter().dispatch(
        GenerationRequest(
            prompt="a castle",
            input_images=["https://img.test/ref.png", "https://img.test/other.png"],
            number_of_outputs=2,
            parameters={"aspect_ratio": "16:9", "seed": 42, "ignored": True},
        )
    )

    assert isinstance(result, DispatchInProgress)
    assert result.provider_task_id == "pred-1"
    method, url, kwargs = calls[0]
    assert (method, url) == ("POST", "https://replicate.test/v1/predictions")
    assert kwargs["json"] == {
        "input": {
            "prompt": "a castle",
            "aspect_ratio": "16:9",
            "seed": 42,
            "num_outputs": 2,
            "image": "https://img.test/ref.png",
        },
        "version": "v-123",
    }


@pytest.mark.asyncio
async def test_dispatch_can_finish_immediately(monkeypatch) -> None:
    configure_httpx(
        monkeypatch,
        post_responses=[
            DummyHTTPResponse(201, json_data={"id": "pred-2", "status": "succeeded", "output": "https://r.test/1.webp"})
        ],
    )

    result = await make_adapter().dispatch(GenerationRequest(prompt="p"))

    assert isinstance(result, DispatchSuccess)
    assert [item.url for item in result.results] == ["https://r.test/1.webp"]


@pytest.mark.asyncio
async def test_dispatch_rejection(monkeypatch) -> None:
    configure_httpx(monkeypatch, post_responses=[DummyHTTPResponse(422, json_data={"detail": "Invalid version"})])

    result = await make_adapter().dispatch(GenerationRequest(prompt="p"))

    assert result == DispatchError("Invalid version", retryable=False)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"id": "pred-1", "status": "processing"}, DispatchInProgress),
        ({"id": "pred-1", "status": "succeeded", "output": ["https://r.test/a.png", "https://r.test/b.png"]}, DispatchSuccess),
        ({"id": "pred-1", "status": "failed", "error": "NSFW content detected"}, DispatchError),
        ({"id": "pred-1", "status": "canceled"}, DispatchError),
    ],
)
async def test_check_status_maps_prediction_states(monkeypatch, body, expected) -> None:
    calls = configure_httpx(monkeypatch, get_responses=[DummyHTTPResponse(200, json_data=body)])

    result = await make_adapter().check_status("pred-1")

    assert isinstance(result, expected)
    assert calls[0][:2] == ("GET", "https://replicate.test/v1/predictions/pred-1")


@pytest.mark.asyncio
async def test_check_status_failure_messages(monkeypatch) -> None:
    configure_httpx(
        monkeypatch,
        get_responses=[
            DummyHTTPResponse(200, json_data={"status": "failed", "error": "NSFW content detected"}),
            DummyHTTPResponse(200, json_data={"status": "canceled"}),
        ],
    )
    adapter = make_adapter()

    assert (await adapter.check_status("p")).message == "NSFW content detected"
    assert (await adapter.check_status("p")).message == "Prediction canceled"


@pytest.mark.asyncio
@pytest.mark.parametrize("output", [None, [], [None, ""]])
async def test_succeeded_without_output_is_an_error(monkeypatch, output) -> None:
    configure_httpx(
        monkeypatch,
        get_responses=[DummyHTTPResponse(200, json_data={"id": "pred-1", "status": "succeeded", "output": output})],
    )

    result = await make_adapter().check_status("pred-1")

    assert isinstance(result, DispatchError)
    assert result.message == "Prediction succeeded without output"


@pytest.mark.asyncio
async def test_check_status_raises_when_unreachable(monkeypatch) -> None:
    configure_httpx(monkeypatch, get_responses=[DummyHTTPResponse(502, text="bad gateway")])

    with pytest.raises(ProviderPollError):
        await make_adapter().check_status("pred-1")
