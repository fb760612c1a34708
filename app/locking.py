"""
Per-resource leases.

A lease is an exclusive, non-waiting lock on a string key held for one
operation. Acquisition never blocks: a held key raises LockContentionError
so the caller can retry later.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import uuid4

from redis import Redis

from app.config import settings
from app.results import LockContentionError

logger = logging.getLogger(__name__)


class InProcessLeaseManager:
    """Leases for a single process: the set of keys currently held."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: set[str] = set()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            if key in self._held:
                raise LockContentionError(
                    "Operation already in progress, try again shortly", resource=key
                )
            self._held.add(key)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(key)

    @property
    def held(self) -> frozenset[str]:
        return frozenset(self._held)


# Deletes the key only if it still carries our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisLeaseManager:
    """Leases shared by every process talking to the same Redis."""

    def __init__(self, connection: Redis, ttl_ms: int, namespace: str = "nasab:lease:"):
        self.connection = connection
        self.ttl_ms = ttl_ms
        self.namespace = namespace

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        name = self.namespace + key
        token = uuid4().hex
        if not self.connection.set(name, token, nx=True, px=self.ttl_ms):
            raise LockContentionError(
                "Operation already in progress, try again shortly", resource=key
            )
        try:
            yield
        finally:
            released = self.connection.eval(_RELEASE_SCRIPT, 1, name, token)
            if not released:
                logger.warning("Lease %s expired before release", key)


_manager: Optional[object] = None


def get_lease_manager():
    """Process-wide lease manager selected by ``settings.lease_backend``."""
    global _manager
    if _manager is None:
        if settings.lease_backend == "redis":
            _manager = RedisLeaseManager(Redis.from_url(settings.redis_url), settings.lease_ttl_ms)
        else:
            _manager = InProcessLeaseManager()
    return _manager
