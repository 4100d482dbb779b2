"""
Named advisory locks.

Responsibilities:
- Cooperative, exclusive locks keyed by an arbitrary string.
- Bounded acquisition: every acquire takes a timeout and reports failure
  instead of blocking forever.

Non-Responsibilities:
- No transaction handling (see cluster.ScopedLock for commit-on-release).

Invariant:
A key is held by at most one owner per database at a time.
"""

import hashlib
import threading
import time
from typing import Dict

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

MAX_KEY_LENGTH = 64  # MySQL GET_LOCK limit
POLL_INTERVAL = 0.05


def normalize_lock_key(key: str) -> str:
    """Hash keys that do not fit the server's lock-name limit."""
    if len(key) <= MAX_KEY_LENGTH:
        return key
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


class LockManager:
    """Interface for named lock backends."""

    def acquire(self, key: str, timeout: float) -> bool:
        raise NotImplementedError

    def release(self, key: str) -> None:
        raise NotImplementedError


class LocalLockManager(LockManager):
    """
    Process-local named locks.

    Suitable for SQLite or any single-process deployment, where all
    workers share one interpreter.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def acquire(self, key: str, timeout: float) -> bool:
        return self._lock_for(normalize_lock_key(key)).acquire(timeout=max(timeout, 0))

    def release(self, key: str) -> None:
        self._lock_for(normalize_lock_key(key)).release()

    def is_locked(self, key: str) -> bool:
        return self._lock_for(normalize_lock_key(key)).locked()


class _ConnectionLockManager(LockManager):
    """Server-side locks that live as long as the connection that took them."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._held: Dict[str, Connection] = {}
        self._guard = threading.Lock()

    def acquire(self, key: str, timeout: float) -> bool:
        name = normalize_lock_key(key)
        conn = self.engine.connect()
        try:
            acquired = self._try_lock(conn, name, timeout)
        except Exception:
            conn.close()
            raise
        if not acquired:
            conn.close()
            return False
        with self._guard:
            self._held[name] = conn
        return True

    def release(self, key: str) -> None:
        name = normalize_lock_key(key)
        with self._guard:
            conn = self._held.pop(name, None)
        if conn is None:
            return
        try:
            self._unlock(conn, name)
        finally:
            conn.close()

    def _try_lock(self, conn: Connection, name: str, timeout: float) -> bool:
        raise NotImplementedError

    def _unlock(self, conn: Connection, name: str) -> None:
        raise NotImplementedError


class PostgresAdvisoryLockManager(_ConnectionLockManager):
    """Session-level ``pg_advisory_lock`` keyed by ``hashtext(name)``."""

    def _try_lock(self, conn: Connection, name: str, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            got = conn.execute(
                text("SELECT pg_try_advisory_lock(hashtext(:name))"), {"name": name}
            ).scalar()
            conn.commit()
            if got:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(POLL_INTERVAL)

    def _unlock(self, conn: Connection, name: str) -> None:
        conn.execute(text("SELECT pg_advisory_unlock(hashtext(:name))"), {"name": name})
        conn.commit()


class MySQLNamedLockManager(_ConnectionLockManager):
    """``GET_LOCK`` / ``RELEASE_LOCK``; the server does the waiting."""

    def _try_lock(self, conn: Connection, name: str, timeout: float) -> bool:
        got = conn.execute(
            text("SELECT GET_LOCK(:name, :timeout)"),
            {"name": name, "timeout": max(int(round(timeout)), 0)},
        ).scalar()
        return got == 1

    def _unlock(self, conn: Connection, name: str) -> None:
        conn.execute(text("SELECT RELEASE_LOCK(:name)"), {"name": name})


_LOCAL_MANAGERS: Dict[str, LocalLockManager] = {}
_LOCAL_GUARD = threading.Lock()


def lock_manager_for(engine: Engine) -> LockManager:
    """
    Pick the lock backend matching the primary's dialect.

    Local managers are shared per database URL so every cluster object
    pointing at the same SQLite file contends on the same locks.
    """
    dialect = engine.dialect.name
    if dialect == "postgresql":
        return PostgresAdvisoryLockManager(engine)
    if dialect in ("mysql", "mariadb"):
        return MySQLNamedLockManager(engine)
    url = str(engine.url)
    with _LOCAL_GUARD:
        manager = _LOCAL_MANAGERS.get(url)
        if manager is None:
            manager = _LOCAL_MANAGERS[url] = LocalLockManager()
        return manager
