"""Shared fixtures: an in-memory object store and wired services."""

import hashlib
import itertools
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import pytest

from upload_coordinator.errors import UpstreamError
from upload_coordinator.models import MultipartHandle
from upload_coordinator.object_store import ObjectStore
from upload_coordinator.services import assemble_services
from upload_coordinator.session_store import MemorySessionStore


class FakeObjectStore(ObjectStore):
    """Object store that keeps multipart uploads in memory."""

    def __init__(self):
        self._ids = itertools.count(1)
        self._signatures = itertools.count(1)
        self.uploads: dict[str, dict[int, bytes]] = {}
        self.completed: dict[str, list[dict[str, Any]]] = {}
        self.aborted: set[str] = set()
        self.calls: list[str] = []
        self.fail_on: Optional[str] = None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise UpstreamError(f"S3 {name} failed: simulated")

    def _parts(self, handle: MultipartHandle) -> dict[int, bytes]:
        if handle.upload_id not in self.uploads:
            raise UpstreamError(f"NoSuchUpload: {handle.upload_id}")
        return self.uploads[handle.upload_id]

    @staticmethod
    def etag_for(data: bytes) -> str:
        return f'"{hashlib.md5(data).hexdigest()}"'

    def create_multipart(self, key: str, content_type: Optional[str]) -> MultipartHandle:
        self._record("create_multipart")
        upload_id = f"mpu-{next(self._ids)}"
        self.uploads[upload_id] = {}
        return MultipartHandle(key=key, upload_id=upload_id)

    def upload_part(self, handle: MultipartHandle, part_number: int, body: bytes) -> str:
        self._record("upload_part")
        self._parts(handle)[part_number] = body
        return self.etag_for(body)

    def put_direct(self, url: str, body: bytes) -> str:
        """Simulate a client PUT to a presigned URL."""
        query = parse_qs(urlparse(url).query)
        upload_id = query["uploadId"][0]
        part_number = int(query["partNumber"][0])
        self.uploads[upload_id][part_number] = body
        return self.etag_for(body)

    def presign_part_url(
        self, handle: MultipartHandle, part_number: int, ttl_seconds: int
    ) -> str:
        self._record("presign_part_url")
        self._parts(handle)
        return (
            f"https://s3.test/{handle.key}?uploadId={handle.upload_id}"
            f"&partNumber={part_number}&X-Amz-Expires={ttl_seconds}"
            f"&X-Amz-Signature=sig{next(self._signatures)}"
        )

    def list_parts(self, handle: MultipartHandle) -> list[dict[str, Any]]:
        self._record("list_parts")
        return [
            {"partNumber": number, "etag": self.etag_for(data), "size": len(data)}
            for number, data in sorted(self._parts(handle).items())
        ]

    def complete_multipart(
        self, handle: MultipartHandle, ordered_parts: list[dict[str, Any]]
    ) -> dict[str, Optional[str]]:
        self._record("complete_multipart")
        self._parts(handle)
        if not ordered_parts:
            raise UpstreamError("S3 complete_multipart_upload failed: MalformedXML")
        self.completed[handle.upload_id] = ordered_parts
        del self.uploads[handle.upload_id]
        return {
            "location": f"https://s3.test/{handle.key}",
            "etag": f'"final-{len(ordered_parts)}"',
        }

    def abort_multipart(self, handle: MultipartHandle) -> None:
        self._record("abort_multipart")
        self._parts(handle)
        del self.uploads[handle.upload_id]
        self.aborted.add(handle.upload_id)


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore(lock_timeout=5.0)


@pytest.fixture
def services(object_store, session_store):
    return assemble_services(object_store, session_store)
