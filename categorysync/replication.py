"""
Replication positions: how far a replica has replayed the primary.

Each strategy reads an opaque position from the primary and answers
whether a replica has reached it. Waiting and timeouts live in the
cluster layer.
"""

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine


class ReplicationPositions:
    """Interface for primary/replica position probes."""

    def primary_position(self, conn: Connection):
        raise NotImplementedError

    def replica_reached(self, conn: Connection, position) -> bool:
        raise NotImplementedError


class SingleNodePositions(ReplicationPositions):
    """No replication: the "replica" is the primary, always caught up."""

    def primary_position(self, conn: Connection):
        return None

    def replica_reached(self, conn: Connection, position) -> bool:
        return True


class PostgresWalPositions(ReplicationPositions):
    """Compare the primary's WAL insert LSN with the standby's replay LSN."""

    def primary_position(self, conn: Connection):
        return conn.execute(text("SELECT pg_current_wal_lsn()::text")).scalar()

    def replica_reached(self, conn: Connection, position) -> bool:
        # NULL replay LSN means the server is not a standby
        reached = conn.execute(
            text(
                "SELECT COALESCE("
                "pg_wal_lsn_diff(pg_last_wal_replay_lsn(), CAST(:pos AS pg_lsn)) >= 0, "
                "true)"
            ),
            {"pos": position},
        ).scalar()
        return bool(reached)


class MySQLGtidPositions(ReplicationPositions):
    """Compare executed GTID sets."""

    def primary_position(self, conn: Connection):
        return conn.execute(text("SELECT @@GLOBAL.gtid_executed")).scalar() or ""

    def replica_reached(self, conn: Connection, position) -> bool:
        if not position:
            return True
        reached = conn.execute(
            text("SELECT GTID_SUBSET(:pos, @@GLOBAL.gtid_executed)"), {"pos": position}
        ).scalar()
        return reached == 1


def positions_for(primary: Engine, has_replicas: bool) -> ReplicationPositions:
    if not has_replicas:
        return SingleNodePositions()
    dialect = primary.dialect.name
    if dialect == "postgresql":
        return PostgresWalPositions()
    if dialect in ("mysql", "mariadb"):
        return MySQLGtidPositions()
    return SingleNodePositions()
