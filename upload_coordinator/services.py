"""Service wiring.

Builds the object store and session store clients once and injects them
into every coordinator component.
"""

import logging
from dataclasses import dataclass

from upload_coordinator.commit import AbortHandler, CommitCoordinator
from upload_coordinator.manager import SessionManager
from upload_coordinator.models import ServiceConfig
from upload_coordinator.object_store import ObjectStore, S3ObjectStore
from upload_coordinator.parts import PartUploadHandler, PresignIssuer
from upload_coordinator.session_store import (
    MemorySessionStore,
    RedisSessionStore,
    SessionStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The coordinator components sharing one pair of store clients."""

    object_store: ObjectStore
    session_store: SessionStore
    manager: SessionManager
    parts: PartUploadHandler
    presigner: PresignIssuer
    committer: CommitCoordinator
    aborter: AbortHandler


def assemble_services(
    object_store: ObjectStore,
    session_store: SessionStore,
    session_ttl_seconds: int = 3600,
    presign_ttl_seconds: int = 900,
) -> Services:
    """Wire the components around existing store adapters."""
    manager = SessionManager(object_store, session_store, session_ttl_seconds)
    return Services(
        object_store=object_store,
        session_store=session_store,
        manager=manager,
        parts=PartUploadHandler(manager, object_store),
        presigner=PresignIssuer(manager, object_store, presign_ttl_seconds),
        committer=CommitCoordinator(manager, object_store),
        aborter=AbortHandler(manager, object_store),
    )


def build_session_store(config: ServiceConfig) -> SessionStore:
    """Create the session store selected by the configuration."""
    if config.session_backend == "redis":
        logger.info("Using Redis session store at %s", config.redis_url)
        return RedisSessionStore.from_url(config.redis_url, config.lock_timeout_seconds)
    logger.info("Using in-memory session store")
    return MemorySessionStore(lock_timeout=config.lock_timeout_seconds)


def build_services(config: ServiceConfig) -> Services:
    """Build S3 and session store clients from configuration and wire them."""
    return assemble_services(
        S3ObjectStore.from_config(config),
        build_session_store(config),
        session_ttl_seconds=config.session_ttl_seconds,
        presign_ttl_seconds=config.presign_ttl_seconds,
    )
