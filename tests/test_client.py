"""Tests for client.py module.

Runs UploadClient against the real FastAPI app through its test client,
with the in-memory object store standing in for S3.
"""

from unittest.mock import MagicMock, call, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from upload_coordinator.api import create_app
from upload_coordinator.checksum import sha256_hex
from upload_coordinator.chunking import KIB, MIN_CHUNK_SIZE, ChunkPlan
from upload_coordinator.client import UploadClient
from upload_coordinator.reporters.base import Reporter

FILE_SIZE = 600 * KIB  # three parts at the minimum chunk size


@pytest.fixture
def data_file(tmp_path):
    """A 600 KiB file of repeating byte ramps."""
    path = tmp_path / "payload.bin"
    path.write_bytes(bytes(range(256)) * (FILE_SIZE // 256))
    return path


@pytest.fixture
def upload_client(services):
    http_client = TestClient(create_app(services))
    with UploadClient("http://testserver", http_client=http_client, delays=(0,)) as client:
        yield client


@pytest.fixture
def direct_puts(object_store):
    """Route presigned PUTs to the in-memory object store."""
    with patch.object(
        UploadClient,
        "put_presigned",
        side_effect=lambda url, data: object_store.put_direct(url, data),
    ) as mock_put:
        yield mock_put


class TestProxyUpload:
    """Tests for uploads through the coordinator."""

    def test_uploads_and_commits(self, upload_client, object_store, data_file):
        result = upload_client.upload_file(
            str(data_file), strategy="proxy", chunk_size=MIN_CHUNK_SIZE
        )

        assert result.success is True, result.error_message
        assert result.total_chunks == 3
        assert result.uploaded_parts == [0, 1, 2]
        assert result.file_id.endswith("-payload.bin")
        assert result.etag == '"final-3"'

        parts = next(iter(object_store.completed.values()))
        assert [part["partNumber"] for part in parts] == [1, 2, 3]

    def test_session_committed(self, upload_client, services, data_file):
        result = upload_client.upload_file(
            str(data_file), strategy="proxy", chunk_size=MIN_CHUNK_SIZE
        )

        session = services.manager.retrieve(result.upload_id)
        assert session.status.value == "committed"
        assert session.file_id == result.file_id

    def test_empty_file(self, upload_client, services, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")

        result = upload_client.upload_file(str(path), strategy="proxy")

        assert result.success is True, result.error_message
        assert result.total_chunks == 0
        assert result.uploaded_parts == []
        assert services.manager.retrieve(result.upload_id).status.value == "committed"


class TestPresignedUpload:
    """Tests for uploads straight to the object store."""

    def test_uploads_and_commits(self, upload_client, services, direct_puts, data_file):
        result = upload_client.upload_file(str(data_file), chunk_size=MIN_CHUNK_SIZE)

        assert result.success is True, result.error_message
        assert result.strategy == "presigned"
        assert direct_puts.call_count == 3

        session = services.manager.retrieve(result.upload_id)
        assert sorted(session.uploaded_parts) == [0, 1, 2]
        assert session.uploaded_parts[2].size == FILE_SIZE - 2 * MIN_CHUNK_SIZE

    def test_fresh_url_per_attempt(self, upload_client, object_store, data_file):
        """A failed PUT is retried with a newly presigned URL."""
        urls = []

        def flaky_put(url, data):
            urls.append(url)
            if len(urls) == 1:
                raise httpx.ConnectError("reset by peer")
            return object_store.put_direct(url, data)

        with patch.object(UploadClient, "put_presigned", side_effect=flaky_put):
            result = upload_client.upload_file(str(data_file), chunk_size=MIN_CHUNK_SIZE)

        assert result.success is True, result.error_message
        assert len(urls) == 4
        assert urls[0] != urls[1]


class TestResume:
    """Tests for resuming an existing session."""

    def test_skips_parts_already_held(self, upload_client, services, data_file):
        created = services.manager.create(
            "payload.bin", FILE_SIZE, desired_chunk_size=MIN_CHUNK_SIZE
        )
        first_part = data_file.read_bytes()[:MIN_CHUNK_SIZE]
        services.parts.upload_part(created.upload_id, 0, first_part)

        result = upload_client.upload_file(
            str(data_file), strategy="proxy", resume_upload_id=created.upload_id
        )

        assert result.success is True, result.error_message
        assert result.upload_id == created.upload_id
        assert result.skipped_parts == [0]
        assert result.uploaded_parts == [1, 2]

    def test_changed_part_is_resent(self, upload_client, services, data_file):
        created = services.manager.create(
            "payload.bin", FILE_SIZE, desired_chunk_size=MIN_CHUNK_SIZE
        )
        services.parts.upload_part(created.upload_id, 0, b"stale bytes")

        result = upload_client.upload_file(
            str(data_file), strategy="proxy", resume_upload_id=created.upload_id
        )

        assert result.success is True
        assert result.skipped_parts == []
        record = services.manager.retrieve(created.upload_id).uploaded_parts[0]
        assert record.checksum == sha256_hex(data_file.read_bytes()[:MIN_CHUNK_SIZE])

    def test_uses_session_strategy(self, upload_client, services, direct_puts, data_file):
        created = services.manager.create(
            "payload.bin",
            FILE_SIZE,
            desired_chunk_size=MIN_CHUNK_SIZE,
            storage_strategy="presigned",
        )

        result = upload_client.upload_file(
            str(data_file), strategy="proxy", resume_upload_id=created.upload_id
        )

        assert result.success is True
        assert result.strategy == "presigned"
        assert direct_puts.call_count == 3

    def test_skips_presigned_parts_in_object_store(
        self, upload_client, services, object_store, direct_puts, data_file
    ):
        """Parts PUT before an interruption are not sent again."""
        created = services.manager.create(
            "payload.bin",
            FILE_SIZE,
            desired_chunk_size=MIN_CHUNK_SIZE,
            storage_strategy="presigned",
        )
        data = data_file.read_bytes()
        for index in (0, 1):
            url = services.presigner.presign(created.upload_id, index).url
            object_store.put_direct(
                url, data[index * MIN_CHUNK_SIZE:(index + 1) * MIN_CHUNK_SIZE]
            )

        result = upload_client.upload_file(
            str(data_file), resume_upload_id=created.upload_id
        )

        assert result.success is True, result.error_message
        assert result.skipped_parts == [0, 1]
        assert result.uploaded_parts == [2]
        assert direct_puts.call_count == 1
        assert services.manager.retrieve(created.upload_id).status.value == "committed"

    def test_changed_presigned_part_is_resent(
        self, upload_client, services, object_store, direct_puts, data_file
    ):
        created = services.manager.create(
            "payload.bin",
            FILE_SIZE,
            desired_chunk_size=MIN_CHUNK_SIZE,
            storage_strategy="presigned",
        )
        url = services.presigner.presign(created.upload_id, 0).url
        object_store.put_direct(url, b"\x00" * MIN_CHUNK_SIZE)

        result = upload_client.upload_file(
            str(data_file), resume_upload_id=created.upload_id
        )

        assert result.success is True, result.error_message
        assert result.skipped_parts == []
        assert result.uploaded_parts == [0, 1, 2]

    def test_committed_session_cannot_resume(self, upload_client, data_file):
        first = upload_client.upload_file(
            str(data_file), strategy="proxy", chunk_size=MIN_CHUNK_SIZE
        )

        result = upload_client.upload_file(
            str(data_file), resume_upload_id=first.upload_id
        )

        assert result.success is False
        assert "committed" in result.error_message

    def test_unknown_session(self, upload_client, data_file):
        result = upload_client.upload_file(str(data_file), resume_upload_id="nope")

        assert result.success is False
        assert "404" in result.error_message


class TestFailures:
    """Tests for failures reported in the result."""

    def test_commit_rejection_carries_detail(self, services, data_file):
        class SkippingClient(UploadClient):
            def _send_part(self, upload_id, strategy, index, data):
                if index != 1:
                    super()._send_part(upload_id, strategy, index, data)

        http_client = TestClient(create_app(services))
        client = SkippingClient("http://testserver", http_client=http_client, delays=(0,))

        result = client.upload_file(
            str(data_file), strategy="proxy", chunk_size=MIN_CHUNK_SIZE
        )

        assert result.success is False
        assert "Commit rejected" in result.error_message
        assert "'missing': [1]" in result.error_message

    def test_plan_mismatch(self, upload_client, data_file):
        with patch(
            "upload_coordinator.client.plan_chunks",
            return_value=ChunkPlan(chunk_size=1024, total_chunks=600),
        ):
            result = upload_client.upload_file(
                str(data_file), strategy="proxy", chunk_size=MIN_CHUNK_SIZE
            )

        assert result.success is False
        assert "chunk plan differs" in result.error_message

    def test_upstream_failure(self, upload_client, object_store, data_file):
        """A 502 is retried, then reported once attempts run out."""
        object_store.fail_on = "upload_part"

        result = upload_client.upload_file(
            str(data_file), strategy="proxy", chunk_size=MIN_CHUNK_SIZE
        )

        assert result.success is False
        assert "3 attempts" in result.error_message
        assert object_store.calls.count("upload_part") == 3


class TestReporterCallbacks:
    """Tests for reporter notifications."""

    def test_callbacks(self, services, data_file):
        reporter = MagicMock(spec=Reporter)
        http_client = TestClient(create_app(services))
        client = UploadClient(
            "http://testserver", http_client=http_client, reporter=reporter
        )

        result = client.upload_file(str(data_file), strategy="proxy", chunk_size=MIN_CHUNK_SIZE)

        reporter.on_upload_start.assert_called_once_with("payload.bin", FILE_SIZE, "proxy")
        reporter.on_session_created.assert_called_once_with(
            result.upload_id, MIN_CHUNK_SIZE, 3
        )
        assert reporter.on_part_complete.call_args_list == [
            call(0, MIN_CHUNK_SIZE, False),
            call(1, MIN_CHUNK_SIZE, False),
            call(2, FILE_SIZE - 2 * MIN_CHUNK_SIZE, False),
        ]
        reporter.on_upload_complete.assert_called_once_with(result)
