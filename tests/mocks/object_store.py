"""In-memory object store with scripted failures."""

from __future__ import annotations

from collections.abc import Iterable

CDN_BASE_URL = "https://cdn.mediagen.test"


class FakeObjectStore:
    def __init__(self, failures: Iterable[BaseException] = ()) -> None:
        self.failures = list(failures)
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.put_calls = 0
        self.deleted: list[str] = []

    def put_object(self, *, key: str, body: bytes, content_type: str) -> None:
        self.put_calls += 1
        if self.failures:
            raise self.failures.pop(0)
        self.objects[key] = (body, content_type)

    def delete_object(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)

    def public_url(self, key: str) -> str:
        return f"{CDN_BASE_URL}/{key}"
