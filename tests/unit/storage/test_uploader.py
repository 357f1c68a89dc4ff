from __future__ import annotations

import base64
import random
import re

import httpx
import pytest
from botocore import exceptions as botocore_exc

from src.mediagen.config import UploadRetryPolicy
from src.mediagen.generation.generation_errors import UploadError
from src.mediagen.storage.uploader import (
    ObjectStoreUploader,
    base_backoff_delay,
    build_storage_key,
    compute_backoff_delay,
    decode_data_url,
    detect_content_type,
    extension_from_url,
    is_retryable_upload_error,
)
from tests.mocks.http import DummyHTTPResponse, configure_httpx
from tests.mocks.object_store import CDN_BASE_URL, FakeObjectStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16


def client_error(code: str, status: int) -> botocore_exc.ClientError:
    return botocore_exc.ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "PutObject",
    )


class StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def make_uploader(store: FakeObjectStore, sleeps: list[float], **policy_overrides) -> ObjectStoreUploader:
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return ObjectStoreUploader(
        store=store,
        policy=UploadRetryPolicy(**policy_overrides),
        sleep=record_sleep,
        rng=random.Random(7),
        epoch_ms=lambda: 1767268800000,
    )


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (client_error("AccessDenied", 403), False),
        (client_error("NoSuchBucket", 404), False),
        (client_error("Custom", 404), False),
        (client_error("SlowDown", 503), True),
        (client_error("Custom", 500), True),
        (client_error("RequestTimeout", 400), True),
        (botocore_exc.EndpointConnectionError(endpoint_url="https://s3.test"), True),
        (botocore_exc.NoCredentialsError(), False),
        (FileNotFoundError("missing.png"), False),
        (TimeoutError("read"), True),
        (httpx.ConnectError("refused"), True),
        (StatusError("throttled", 429), True),
        (StatusError("forbidden", 403), False),
        (RuntimeError("socket hang up"), True),
        (RuntimeError("Access Denied by bucket policy"), False),
        (RuntimeError("something odd"), True),
    ],
)
def test_is_retryable_upload_error(exc, expected) -> None:
    assert is_retryable_upload_error(exc) is expected


def test_backoff_grows_and_is_capped() -> None:
    policy = UploadRetryPolicy(base_delay_seconds=2.0, max_delay_seconds=60.0, jitter_ratio=0.25)

    delays = [base_backoff_delay(attempt, policy) for attempt in range(1, 8)]

    assert delays == [2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0]


def test_jittered_backoff_stays_in_band() -> None:
    policy = UploadRetryPolicy(base_delay_seconds=2.0, max_delay_seconds=60.0, jitter_ratio=0.25)
    rng = random.Random(3)

    for attempt in range(1, 10):
        base = policy.base_delay_seconds * 2 ** (attempt - 1)
        delay = compute_backoff_delay(attempt, policy, rng)
        assert min(60.0, base * 0.75) <= delay <= min(60.0, base * 1.25)


def test_build_storage_key_normalises_slashes() -> None:
    assert build_storage_key("/ai-generation/openai/", ".png", epoch_ms=1, token="ab") == "ai-generation/openai/1_ab.png"
    assert build_storage_key("", "png", epoch_ms=1, token="ab") == "1_ab.png"


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (JPEG_BYTES, "image/jpeg"),
        (PNG_BYTES, "image/png"),
        (b"GIF89a....", "image/gif"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"RIFF\x00\x00\x00\x00WAVEfmt ", "application/octet-stream"),
        (b"\x00\x00\x00\x18ftypmp42", "video/mp4"),
        (b"hello", "application/octet-stream"),
    ],
)
def test_detect_content_type(data, expected) -> None:
    assert detect_content_type(data) == expected


def test_decode_data_url_variants() -> None:
    encoded = base64.b64encode(PNG_BYTES).decode()

    assert decode_data_url(f"data:image/png;base64,{encoded}") == (PNG_BYTES, "image/png")
    assert decode_data_url("data:,hello%20world") == (b"hello world", None)
    with pytest.raises(ValueError):
        decode_data_url("data:image/png;base64")


def test_extension_from_url() -> None:
    assert extension_from_url("https://cdn.test/a/b/out.PNG?sig=1") == "png"
    assert extension_from_url("https://cdn.test/a/b/out") is None
    assert extension_from_url("data:image/png;base64,AAAA") is None


@pytest.mark.asyncio
async def test_upload_bytes_builds_key_and_url() -> None:
    store = FakeObjectStore()
    uploader = make_uploader(store, [])

    receipt = await uploader.upload_bytes(PNG_BYTES, prefix="ai-generation/openai")

    assert re.fullmatch(r"ai-generation/openai/1767268800000_[0-9a-f]{16}\.png", receipt.key)
    assert receipt.url == f"{CDN_BASE_URL}/{receipt.key}"
    assert receipt.content_type == "image/png"
    assert receipt.size_bytes == len(PNG_BYTES)
    assert receipt.attempts == 1
    assert store.objects[receipt.key] == (PNG_BYTES, "image/png")


@pytest.mark.asyncio
async def test_upload_succeeds_on_third_attempt() -> None:
    store = FakeObjectStore(failures=[client_error("SlowDown", 503), TimeoutError("read timed out")])
    sleeps: list[float] = []
    uploader = make_uploader(store, sleeps)

    receipt = await uploader.upload_bytes(PNG_BYTES)

    assert receipt.attempts == 3
    assert store.put_calls == 3
    assert len(sleeps) == 2
    assert 1.5 <= sleeps[0] <= 2.5
    assert 3.0 <= sleeps[1] <= 5.0
    assert receipt.key.startswith("ai-generation/")


@pytest.mark.asyncio
async def test_non_retryable_error_stops_immediately() -> None:
    store = FakeObjectStore(failures=[client_error("AccessDenied", 403)])
    sleeps: list[float] = []
    uploader = make_uploader(store, sleeps)

    with pytest.raises(UploadError) as exc_info:
        await uploader.upload_bytes(PNG_BYTES)

    assert store.put_calls == 1
    assert sleeps == []
    assert exc_info.value.retryable is False
    assert exc_info.value.attempts == 1
    assert store.objects == {}


@pytest.mark.asyncio
async def test_retries_are_bounded() -> None:
    store = FakeObjectStore(failures=[TimeoutError("timed out")] * 10)
    sleeps: list[float] = []
    uploader = make_uploader(store, sleeps, max_attempts=5)

    with pytest.raises(UploadError, match="after 5 attempts") as exc_info:
        await uploader.upload_bytes(PNG_BYTES)

    assert store.put_calls == 5
    assert len(sleeps) == 4
    assert exc_info.value.attempts == 5
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_upload_from_data_url() -> None:
    store = FakeObjectStore()
    uploader = make_uploader(store, [])
    url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()

    receipt = await uploader.upload_from_url(url, prefix="inline")

    assert receipt.key.startswith("inline/")
    assert receipt.key.endswith(".png")
    assert store.objects[receipt.key][0] == PNG_BYTES


@pytest.mark.asyncio
async def test_upload_from_http_url(monkeypatch) -> None:
    calls = configure_httpx(
        monkeypatch,
        get_responses=[DummyHTTPResponse(200, content=JPEG_BYTES, headers={"Content-Type": "image/jpeg"})],
    )
    store = FakeObjectStore()
    uploader = make_uploader(store, [])

    receipt = await uploader.upload_from_url("https://provider.test/files/abc")

    assert calls[0][:2] == ("GET", "https://provider.test/files/abc")
    assert receipt.content_type == "image/jpeg"
    assert receipt.key.endswith(".jpg")


@pytest.mark.asyncio
async def test_declared_type_used_when_bytes_are_unknown(monkeypatch) -> None:
    configure_httpx(
        monkeypatch,
        get_responses=[DummyHTTPResponse(200, content=b"ID3....", headers={"Content-Type": "audio/mpeg; charset=binary"})],
    )
    uploader = make_uploader(FakeObjectStore(), [])

    receipt = await uploader.upload_from_url("https://provider.test/track")

    assert receipt.content_type == "audio/mpeg"
    assert receipt.key.endswith(".mp3")


@pytest.mark.asyncio
async def test_failed_download_is_not_uploaded(monkeypatch) -> None:
    configure_httpx(monkeypatch, get_responses=[DummyHTTPResponse(404)])
    store = FakeObjectStore()
    uploader = make_uploader(store, [])

    with pytest.raises(UploadError) as exc_info:
        await uploader.upload_from_url("https://provider.test/expired.png")

    assert exc_info.value.attempts == 0
    assert exc_info.value.retryable is False
    assert store.put_calls == 0


@pytest.mark.asyncio
async def test_malformed_url_raises_upload_error(monkeypatch) -> None:
    configure_httpx(
        monkeypatch,
        get_responses=[httpx.InvalidURL("Invalid non-printable ASCII character in URL")],
    )
    store = FakeObjectStore()
    uploader = make_uploader(store, [])

    with pytest.raises(UploadError, match="Invalid artifact URL") as exc_info:
        await uploader.upload_from_url("https://cdn.provider.test/a\x01b.png")

    assert exc_info.value.retryable is False
    assert store.put_calls == 0


@pytest.mark.asyncio
async def test_upload_file(tmp_path) -> None:
    path = tmp_path / "render.webp"
    path.write_bytes(b"RIFF\x00\x00\x00\x00WEBPVP8 ")
    store = FakeObjectStore()
    uploader = make_uploader(store, [])

    receipt = await uploader.upload_file(path, prefix="files")

    assert receipt.content_type == "image/webp"
    assert receipt.key.endswith(".webp")

    with pytest.raises(UploadError):
        await uploader.upload_file(tmp_path / "missing.png")


@pytest.mark.asyncio
async def test_delete_removes_object() -> None:
    store = FakeObjectStore()
    uploader = make_uploader(store, [])
    receipt = await uploader.upload_bytes(PNG_BYTES)

    await uploader.delete(receipt.key)

    assert store.deleted == [receipt.key]
    assert receipt.key not in store.objects
