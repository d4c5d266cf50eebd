"""
Per-tenant exclusive locks.

Provision, deprovision, upgrade and purge of one tenant are serialized by a
lock keyed by the tenant id. Locks are held through a context manager so they
are released on every exit path, and acquisition always honours a deadline.

- AdvisoryLockManager: PostgreSQL session-level advisory locks, shared by every
  process using the database.
- LocalLockManager: in-process keyed locks, for single-process deployments and
  engines without advisory locks (SQLite).
"""

import hashlib
import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Generator, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..exceptions import LockTimeout

logger = logging.getLogger(__name__)


class Deadline:
    """A point in time after which blocking operations must give up."""

    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> Optional[float]:
        """Seconds left (never negative), or None for no deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


def compute_stable_hash(key: str) -> int:
    """
    Compute a stable hash for advisory lock keys.

    Uses SHA-256 so the value is identical across processes and Python
    versions, masked to PostgreSQL's non-negative signed 64-bit range.
    """
    hash_hex = hashlib.sha256(key.encode()).hexdigest()[:16]
    return int(hash_hex, 16) & 0x7FFFFFFFFFFFFFFF


class LocalLockManager:
    """
    Keyed in-process locks.

    A key's lock lives only while someone holds or waits for it, so the
    table does not grow with every tenant ever seen.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}
        self._guard = threading.Lock()

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            self._users[key] = self._users.get(key, 0) + 1
            return self._locks.setdefault(key, threading.Lock())

    def _checkin(self, key: str):
        with self._guard:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, deadline: Deadline) -> Generator[None, None, None]:
        lock = self._checkout(key)
        try:
            remaining = deadline.remaining()
            if not lock.acquire(timeout=-1 if remaining is None else remaining):
                raise LockTimeout(key, deadline.timeout)

            logger.debug(f"Acquired local lock {key}")
            try:
                yield
            finally:
                lock.release()
                logger.debug(f"Released local lock {key}")
        finally:
            self._checkin(key)


class AdvisoryLockManager:
    """
    PostgreSQL advisory locks.

    A dedicated connection holds the session-level lock for the whole critical
    section; ``pg_try_advisory_lock`` is polled until the deadline so a stuck
    holder never blocks callers indefinitely.
    """

    def __init__(self, engine: Engine, namespace: str = 'tenant', poll_interval: float = 0.1):
        self.engine = engine
        self.namespace = namespace
        self.poll_interval = poll_interval

    @contextmanager
    def hold(self, key: str, deadline: Deadline) -> Generator[None, None, None]:
        lock_key = compute_stable_hash(f"{self.namespace}:{key}")

        with self.engine.connect() as conn:
            conn = conn.execution_options(isolation_level='AUTOCOMMIT')

            while not conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": lock_key}).scalar():
                remaining = deadline.remaining()
                if remaining is not None and remaining <= 0:
                    raise LockTimeout(key, deadline.timeout)
                time.sleep(self.poll_interval if remaining is None else min(self.poll_interval, remaining))

            logger.debug(f"Acquired advisory lock {key} ({lock_key})")
            try:
                yield
            finally:
                conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key})
                logger.debug(f"Released advisory lock {key} ({lock_key})")


def lock_manager_for(engine: Engine):
    if engine.dialect.name == 'postgresql':
        return AdvisoryLockManager(engine)
    return LocalLockManager()
