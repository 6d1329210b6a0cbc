"""Session store adapter.

Durable, TTL-expiring key-value persistence for session records, plus a
per-key exclusive section used to serialize read-modify-write updates of
one session.

Two backends:
- MemorySessionStore: process-local, for development and tests
- RedisSessionStore: shared by every service process (redis-py)

Records are stored as JSON under ``upload:session:{uploadId}``.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import redis
from redis.exceptions import LockError, RedisError

from upload_coordinator.errors import UpstreamError
from upload_coordinator.models import UploadSession

logger = logging.getLogger(__name__)

KEY_PREFIX = "upload:session:"

# Records are kept at least this long even if expiresAt is close
MIN_TTL_SECONDS = 60

# Upper bound on how long a Redis lock survives a crashed holder
LOCK_LEASE_SECONDS = 60


def session_key(upload_id: str) -> str:
    """Storage key for a session record."""
    return f"{KEY_PREFIX}{upload_id}"


class SessionStore(ABC):
    """Key-value store with TTL expiry and per-key locking."""

    @abstractmethod
    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value under ``key``, or None if absent or expired."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        pass

    @abstractmethod
    def lock(self, key: str):
        """Context manager holding an exclusive section for ``key``.

        Raises:
            UpstreamError: If the lock cannot be acquired in time.
        """
        pass


class MemorySessionStore(SessionStore):
    """Process-local session store.

    Expired records are dropped lazily when read.

    Args:
        lock_timeout: Seconds to wait for a per-key lock
    """

    def __init__(self, lock_timeout: float = 10.0):
        self.lock_timeout = lock_timeout
        self._data: dict[str, tuple[str, float]] = {}
        self._locks: dict[str, threading.Lock] = {}
        # Holders and waiters per key; a lock is dropped when this reaches zero
        self._lock_users: dict[str, int] = {}
        self._guard = threading.Lock()

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._guard:
            self._data[key] = (value, time.monotonic() + ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        with self._guard:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, deadline = entry
            if time.monotonic() >= deadline:
                del self._data[key]
                return None
            return value

    def delete(self, key: str) -> None:
        with self._guard:
            self._data.pop(key, None)

    def _release_user(self, key: str) -> None:
        with self._guard:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
            self._lock_users[key] = self._lock_users.get(key, 0) + 1

        try:
            if not key_lock.acquire(timeout=self.lock_timeout):
                raise UpstreamError(f"Timed out waiting for lock on {key}")
            try:
                yield
            finally:
                key_lock.release()
        finally:
            self._release_user(key)


class RedisSessionStore(SessionStore):
    """Session store backed by Redis.

    Args:
        client: redis-py client (``decode_responses=True``)
        lock_timeout: Seconds to wait for a per-key lock
    """

    def __init__(self, client: Any, lock_timeout: float = 10.0):
        self.client = client
        self.lock_timeout = lock_timeout

    @classmethod
    def from_url(cls, redis_url: str, lock_timeout: float = 10.0) -> "RedisSessionStore":
        """Build a store from a ``redis://`` URL."""
        return cls(redis.Redis.from_url(redis_url, decode_responses=True), lock_timeout)

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise UpstreamError(f"Redis SET {key} failed: {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except RedisError as e:
            raise UpstreamError(f"Redis GET {key} failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as e:
            raise UpstreamError(f"Redis DEL {key} failed: {e}") from e

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        redis_lock = self.client.lock(
            f"{key}:lock",
            timeout=LOCK_LEASE_SECONDS,
            blocking_timeout=self.lock_timeout,
        )
        try:
            acquired = redis_lock.acquire()
        except RedisError as e:
            raise UpstreamError(f"Redis lock on {key} failed: {e}") from e
        if not acquired:
            raise UpstreamError(f"Timed out waiting for lock on {key}")

        try:
            yield
        finally:
            try:
                redis_lock.release()
            except LockError as e:
                # The lease ran out while the holder was still working
                logger.warning("Lock on %s expired before release: %s", key, e)


def save_session(store: SessionStore, session: UploadSession) -> None:
    """Persist a session with a TTL that ends at its expiry deadline."""
    remaining = int((session.expires_at - time.time() * 1000) // 1000)
    ttl = max(MIN_TTL_SECONDS, remaining)
    store.put(session_key(session.upload_id), json.dumps(session.to_dict()), ttl)


def load_session(store: SessionStore, upload_id: str) -> Optional[UploadSession]:
    """Load and decode a session record.

    Returns:
        The session, or None if absent or expired.

    Raises:
        UpstreamError: If the stored record cannot be decoded.
    """
    raw = store.get(session_key(upload_id))
    if raw is None:
        return None

    try:
        return UploadSession.from_dict(json.loads(raw))
    except (json.JSONDecodeError, ValueError) as e:
        logger.error("Corrupt session record for %s: %s", upload_id, e)
        raise UpstreamError(f"Corrupt session record for {upload_id}: {e}") from e


def delete_session(store: SessionStore, upload_id: str) -> None:
    """Remove a session record."""
    store.delete(session_key(upload_id))
