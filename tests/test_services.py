"""Tests for services.py module."""

from unittest.mock import patch

from upload_coordinator.models import ServiceConfig
from upload_coordinator.object_store import S3ObjectStore
from upload_coordinator.services import assemble_services, build_services, build_session_store
from upload_coordinator.session_store import MemorySessionStore


class TestBuildSessionStore:
    def test_memory_backend(self):
        store = build_session_store(ServiceConfig(lock_timeout_seconds=3.0))

        assert isinstance(store, MemorySessionStore)
        assert store.lock_timeout == 3.0

    @patch("upload_coordinator.services.RedisSessionStore.from_url")
    def test_redis_backend(self, mock_from_url):
        config = ServiceConfig(session_backend="redis", redis_url="redis://cache:6379/0")

        store = build_session_store(config)

        assert store is mock_from_url.return_value
        mock_from_url.assert_called_once_with("redis://cache:6379/0", 10.0)


class TestAssembleServices:
    def test_components_share_stores(self, object_store, session_store):
        services = assemble_services(
            object_store, session_store, session_ttl_seconds=120, presign_ttl_seconds=60
        )

        assert services.manager.session_store is session_store
        assert services.parts.manager is services.manager
        assert services.committer.object_store is object_store
        assert services.aborter.manager is services.manager
        assert services.presigner.ttl_seconds == 60
        assert services.manager.session_ttl_seconds == 120


class TestBuildServices:
    @patch("upload_coordinator.object_store.boto3.client")
    def test_wires_s3_adapter(self, mock_boto_client):
        config = ServiceConfig(bucket_name="media", region_name="eu-west-1", presign_ttl_seconds=300)

        services = build_services(config)

        assert isinstance(services.object_store, S3ObjectStore)
        assert services.object_store.s3_client is mock_boto_client.return_value
        assert services.object_store.bucket_name == "media"
        assert services.object_store.region_name == "eu-west-1"
        assert services.presigner.ttl_seconds == 300
        assert isinstance(services.session_store, MemorySessionStore)
