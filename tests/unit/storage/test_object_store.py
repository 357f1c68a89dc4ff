from __future__ import annotations

import pytest

from src.mediagen.config import ObjectStoreSettings
from src.mediagen.storage.object_store import S3ObjectStore, public_url_for


class RecordingS3Client:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []

    def put_object(self, **kwargs) -> dict:
        self.calls.append(("put_object", kwargs))
        return {}

    def delete_object(self, **kwargs) -> dict:
        self.calls.append(("delete_object", kwargs))
        return {}


def test_public_url_prefers_public_base() -> None:
    settings = ObjectStoreSettings(
        bucket="media",
        region="eu-west-1",
        endpoint_url="https://minio.local",
        public_base_url="https://cdn.example.com/",
    )

    assert public_url_for(settings, "a/b.png") == "https://cdn.example.com/a/b.png"


def test_public_url_uses_endpoint_path_style() -> None:
    settings = ObjectStoreSettings(bucket="media", region="eu-west-1", endpoint_url="https://minio.local/")

    assert public_url_for(settings, "a/b.png") == "https://minio.local/media/a/b.png"


def test_public_url_defaults_to_aws_virtual_host() -> None:
    settings = ObjectStoreSettings(bucket="media", region="eu-west-1")

    assert public_url_for(settings, "a/b.png") == "https://media.s3.eu-west-1.amazonaws.com/a/b.png"


def test_unconfigured_store_is_rejected() -> None:
    with pytest.raises(ValueError):
        S3ObjectStore(ObjectStoreSettings(bucket="", region="us-east-1"))


def test_put_and_delete_go_to_bucket() -> None:
    client = RecordingS3Client()
    store = S3ObjectStore(ObjectStoreSettings(bucket="media", region="us-east-1"), client=client)

    store.put_object(key="k.png", body=b"data", content_type="image/png")
    store.delete_object("k.png")

    assert client.calls == [
        ("put_object", {"Bucket": "media", "Key": "k.png", "Body": b"data", "ContentType": "image/png"}),
        ("delete_object", {"Bucket": "media", "Key": "k.png"}),
    ]
    assert store.bucket == "media"
