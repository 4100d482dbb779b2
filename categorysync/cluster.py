"""
Primary/replica database cluster and per-run transaction rounds.

A DatabaseCluster owns the engines and the replication and locking
strategies; it is safe to share between worker threads. Each job run
opens a DatabaseRound, which owns that run's sessions, its transaction
ticket and its commit bookkeeping.
"""

import time
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import JobConfig
from .database import make_engine
from .locks import LockManager, lock_manager_for
from .logger import StructuredLogger, get_logger
from .replication import ReplicationPositions, positions_for


class ClusterError(RuntimeError):
    """Raised on misuse of a round, such as locking with writes pending."""
    pass


class TransactionTicket:
    """Proof that the holder owns the outermost transaction scope of a round."""

    def __init__(self, owner: str):
        self.owner = owner

    def __repr__(self) -> str:
        return f"<TransactionTicket owner={self.owner}>"


class DatabaseCluster:
    """
    Engines for one primary and zero or more replicas.

    Args:
        primary: Engine or URL of the primary
        replicas: Engines or URLs of replicas; empty means reads hit the primary
        domain_id: Site identity used to namespace lock keys
        positions: Replication position strategy (derived from dialect if omitted)
        lock_manager: Named lock backend (derived from dialect if omitted)
        replica_groups: Query group name -> replica index
        replica_wait_timeout: Default bound for replica catch-up waits
        poll_interval: Seconds between replica position probes
    """

    def __init__(
        self,
        primary,
        replicas: Sequence = (),
        domain_id: str = "wikidb",
        positions: Optional[ReplicationPositions] = None,
        lock_manager: Optional[LockManager] = None,
        replica_groups: Optional[Dict[str, int]] = None,
        replica_wait_timeout: float = 10.0,
        poll_interval: float = 0.05,
        logger: Optional[StructuredLogger] = None,
    ):
        self.primary_engine = _as_engine(primary)
        self.replica_engines: List[Engine] = [_as_engine(r) for r in replicas]
        self.domain_id = domain_id
        self.positions = positions or positions_for(
            self.primary_engine, bool(self.replica_engines)
        )
        self.lock_manager = lock_manager or lock_manager_for(self.primary_engine)
        self.replica_groups = dict(replica_groups or {})
        self.replica_wait_timeout = replica_wait_timeout
        self.poll_interval = poll_interval
        self.logger = logger or get_logger()
        self._sessionmakers: Dict[int, sessionmaker] = {}

    @classmethod
    def from_config(cls, config: JobConfig, logger: Optional[StructuredLogger] = None):
        return cls(
            config.db_url,
            replicas=config.replica_urls,
            domain_id=config.domain_id,
            replica_wait_timeout=config.replica_wait_timeout,
            logger=logger,
        )

    def replica_engine(self, groups: Iterable[str] = ()) -> Engine:
        """Pick the replica serving the first known query group."""
        if not self.replica_engines:
            return self.primary_engine
        for group in groups:
            index = self.replica_groups.get(group)
            if index is not None and 0 <= index < len(self.replica_engines):
                return self.replica_engines[index]
        return self.replica_engines[0]

    def session_for(self, engine: Engine) -> Session:
        factory = self._sessionmakers.get(id(engine))
        if factory is None:
            factory = self._sessionmakers[id(engine)] = sessionmaker(
                bind=engine, expire_on_commit=False
            )
        return factory()

    def begin_round(self, owner: str) -> "DatabaseRound":
        return DatabaseRound(self, owner)

    def primary_position(self):
        with self.primary_engine.connect() as conn:
            return self.positions.primary_position(conn)

    def wait_for_position(self, engine: Engine, position, timeout: Optional[float] = None) -> bool:
        """
        Poll a replica until it has replayed ``position``.

        Returns:
            False if the replica did not catch up within the timeout
        """
        if engine is self.primary_engine:
            return True
        timeout = self.replica_wait_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            with engine.connect() as conn:
                if self.positions.replica_reached(conn, position):
                    return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.poll_interval)


class ScopedLock:
    """
    Held named lock; releasing commits the round's primary first.

    The commit before unlock guarantees the next holder observes every
    write made under this lock.
    """

    def __init__(self, round_: "DatabaseRound", key: str, owner: str):
        self.round = round_
        self.key = key
        self.owner = owner
        self.released = False

    def __enter__(self) -> "ScopedLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release(commit=exc_type is None)
        return False

    def release(self, commit: bool = True) -> None:
        if self.released:
            return
        self.released = True
        try:
            if commit:
                self.round.commit(self.owner)
            else:
                self.round.rollback()
        finally:
            self.round.cluster.lock_manager.release(self.key)


class DatabaseRound:
    """
    Sessions and transaction bookkeeping for one job run.

    Use as a context manager: on normal exit pending primary writes are
    committed, on error they are rolled back; sessions are closed either way.
    """

    def __init__(self, cluster: DatabaseCluster, owner: str):
        self.cluster = cluster
        self.owner = owner
        self.logger = cluster.logger
        self.batch_commits = 0
        self._primary: Optional[Session] = None
        self._replicas: Dict[int, Session] = {}
        self._ticket: Optional[TransactionTicket] = None
        self._writes_pending = False

    def __enter__(self) -> "DatabaseRound":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                self.commit(self.owner)
            else:
                self.rollback()
        finally:
            self.close()
        return False

    @property
    def primary(self) -> Session:
        if self._primary is None:
            session = self.cluster.session_for(self.cluster.primary_engine)
            event.listen(session, "after_flush", self._on_flush)
            event.listen(session, "after_commit", self._on_transaction_end)
            event.listen(session, "after_rollback", self._on_transaction_end)
            self._primary = session
        return self._primary

    def replica(self, groups: Iterable[str] = ()) -> Session:
        engine = self.cluster.replica_engine(groups)
        session = self._replicas.get(id(engine))
        if session is None:
            session = self._replicas[id(engine)] = self.cluster.session_for(engine)
        return session

    def _on_flush(self, session, flush_context):
        self._writes_pending = True

    def _on_transaction_end(self, session):
        self._writes_pending = False

    def has_pending_writes(self) -> bool:
        if self._primary is None:
            return False
        session = self._primary
        return self._writes_pending or bool(session.new or session.dirty or session.deleted)

    def empty_transaction_ticket(self, owner: str) -> Optional[TransactionTicket]:
        """
        Issue the round's ticket, or None when writes are already pending.

        Only the holder of the ticket may commit mid-round.
        """
        if self.has_pending_writes():
            self.logger.error(
                "Cannot issue transaction ticket: writes already pending",
                owner=owner,
            )
            return None
        self._ticket = TransactionTicket(owner)
        return self._ticket

    def wait_for_primary_pos(self, replica_session: Session, timeout: Optional[float] = None) -> bool:
        """Wait until the replica behind ``replica_session`` reached the primary."""
        engine = replica_session.get_bind()
        if engine is self.cluster.primary_engine:
            return True
        position = self.cluster.primary_position()
        return self.cluster.wait_for_position(engine, position, timeout)

    def flush_snapshot(self, session: Session) -> None:
        """End a read session's transaction so the next query sees fresh data."""
        if session is self._primary and self.has_pending_writes():
            raise ClusterError("Cannot flush snapshot of primary: writes are pending")
        session.rollback()

    def get_scoped_lock_and_flush(self, key: str, owner: str, timeout: float) -> Optional[ScopedLock]:
        """
        Acquire a named lock after ending the primary's read snapshot.

        Returns:
            ScopedLock, or None if the lock was not acquired within ``timeout``

        Raises:
            ClusterError: If the primary has uncommitted writes
        """
        if self.has_pending_writes():
            raise ClusterError(f"{owner}: cannot flush pre-lock snapshot because writes are pending")
        if self._primary is not None:
            self._primary.rollback()
        if not self.cluster.lock_manager.acquire(key, timeout):
            return None
        return ScopedLock(self, key, owner)

    def commit(self, owner: str) -> None:
        if self._primary is not None:
            self._primary.commit()

    def rollback(self) -> None:
        if self._primary is not None:
            self._primary.rollback()

    def commit_and_wait_for_replication(
        self, owner: str, ticket: Optional[TransactionTicket], timeout: Optional[float] = None
    ) -> bool:
        """
        Commit the primary mid-round and wait for every replica to catch up.

        A missing or foreign ticket means the caller does not own the outer
        transaction scope; nothing is committed in that case.

        Returns:
            True if committed and all replicas caught up within the timeout
        """
        if ticket is None or ticket is not self._ticket:
            self.logger.error(
                "Refusing mid-round commit: caller does not own the transaction scope",
                owner=owner,
            )
            return False

        self.commit(owner)
        self.batch_commits += 1

        if not self.cluster.replica_engines:
            return True
        position = self.cluster.primary_position()
        for engine in self.cluster.replica_engines:
            if not self.cluster.wait_for_position(engine, position, timeout):
                self.logger.warning(
                    "Timed out waiting for replication after batch commit",
                    owner=owner,
                    replica=str(engine.url),
                )
                return False
        return True

    def close(self) -> None:
        if self._primary is not None:
            self._primary.close()
            self._primary = None
        for session in self._replicas.values():
            session.close()
        self._replicas.clear()


def _as_engine(value) -> Engine:
    if isinstance(value, Engine):
        return value
    return make_engine(str(value))
