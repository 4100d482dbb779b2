"""
Convergence Window Resolver.

Responsibilities:
- Turn a trigger timestamp into the list of revisions still lacking
  category notifications.

Non-Responsibilities:
- No rendering, no writes.

Invariant:
Progress is monotonic in (timestamp, rev_id): nothing at or before the
newest notified revision inside the fudge window is selected again.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List

from sqlalchemy.orm import Session

from .recentchanges import RecentChangesSink
from .revisions import RevisionRecord, revisions_after


@dataclass(frozen=True)
class ConvergenceWindow:
    cutoff: datetime
    tiebreak_rev_id: int
    revisions: List[RevisionRecord] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.revisions)


def resolve_window(
    session: Session,
    sink: RecentChangesSink,
    page_id: int,
    trigger_timestamp: datetime,
    fudge_seconds: int,
) -> ConvergenceWindow:
    """
    Revisions of ``page_id`` to process, oldest first.

    The fudge window reaches back before the trigger to catch revisions whose
    jobs were enqueued out of commit order (or de-duplicated away).
    """
    cutoff = trigger_timestamp - timedelta(seconds=fudge_seconds)

    checkpoint = sink.latest_categorized_revision(session, page_id, cutoff)
    if checkpoint is not None:
        cutoff, tiebreak = checkpoint
    else:
        tiebreak = 0

    return ConvergenceWindow(cutoff, tiebreak, revisions_after(session, page_id, cutoff, tiebreak))
