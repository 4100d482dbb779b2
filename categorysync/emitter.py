"""
Notification Emitter.

Responsibilities:
- Turn a category delta into added/removed notifications.
- Commit in batches and wait for replicas so transactions stay small.

Non-Responsibilities:
- No diffing and no window selection.

Invariant:
Notifications for a revision are emitted only after those of every
earlier revision handed to the same emitter.
"""

from typing import Optional

from .cluster import DatabaseRound, TransactionTicket
from .differ import CategoryDelta
from .logger import StructuredLogger, get_logger
from .recentchanges import CategoryMembershipChange, RecentChangesSink
from .revisions import PageRecord, RevisionRecord


class NotificationEmitter:
    """
    Emits notifications for one convergence run.

    The batching counter is shared by every revision of the run and
    advances once per emitted notification. Once a batch commit times out
    waiting for replicas, ``replication_lagged`` is set. The current revision
    is still completed without further batch commits, and later revisions
    are refused.
    """

    def __init__(
        self,
        round_: DatabaseRound,
        ticket: Optional[TransactionTicket],
        sink: RecentChangesSink,
        batch_size: int,
        owner: str,
        replica_wait_timeout: Optional[float] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.round = round_
        self.ticket = ticket
        self.sink = sink
        self.batch_size = batch_size
        self.owner = owner
        self.replica_wait_timeout = replica_wait_timeout
        self.logger = logger or get_logger()
        self.emitted = 0
        self.replication_lagged = False

    def emit(self, page: PageRecord, revision: RevisionRecord, delta: CategoryDelta) -> int:
        """
        Record the notifications of ``delta``.

        Returns:
            Number of notifications emitted
        """
        if not delta or self.replication_lagged:
            return 0

        change = CategoryMembershipChange(self.sink, self.round.primary, page, revision)
        change.check_template_links()

        for category in sorted(delta.insertions):
            change.trigger_category_added_notification(category)
            self._count()

        for category in sorted(delta.deletions):
            change.trigger_category_removed_notification(category)
            self._count()

        self.logger.debug(
            "Emitted category notifications",
            page_id=page.page_id,
            rev_id=revision.rev_id,
            added=len(delta.insertions),
            removed=len(delta.deletions),
        )
        return len(delta)

    def _count(self) -> None:
        self.emitted += 1
        if self.replication_lagged or self.emitted % self.batch_size:
            return
        if not self.round.commit_and_wait_for_replication(self.owner, self.ticket, self.replica_wait_timeout):
            self.replication_lagged = True
