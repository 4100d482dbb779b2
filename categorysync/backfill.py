"""
Category Notification Backfill.

Responsibilities:
- Run convergence for every page edited since a point in time.
- Replay pages in order of their oldest unprocessed edit.

Non-Responsibilities:
- No queueing; runs happen inline, one page at a time.

Invariant:
A backfill is idempotent: re-running it emits nothing new.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func

from .database import Revision
from .jobqueue import JobOutcome
from .job import JobServices, run_category_membership_change


@dataclass
class BackfillReport:
    outcomes: Dict[int, JobOutcome] = field(default_factory=dict)

    @property
    def failed_pages(self) -> List[int]:
        return [page_id for page_id, outcome in self.outcomes.items() if not outcome.ok]

    @property
    def notifications(self) -> int:
        return sum(o.notifications_emitted for o in self.outcomes.values())


def pages_edited_since(services: JobServices, since: datetime, limit: Optional[int] = None) -> List[Tuple[int, datetime]]:
    """(page_id, oldest revision timestamp) for pages edited at or after ``since``."""
    with services.cluster.begin_round("backfill.pages_edited_since") as rnd:
        session = rnd.replica(("recentchanges",))
        oldest = func.min(Revision.timestamp)
        query = (
            session.query(Revision.page_id, oldest)
            .filter(Revision.timestamp >= since)
            .group_by(Revision.page_id)
            .order_by(oldest.asc(), Revision.page_id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return [(int(page_id), ts) for page_id, ts in query.all()]


def backfill_category_changes(services: JobServices, since: datetime, limit: Optional[int] = None) -> BackfillReport:
    logger = services.logger
    report = BackfillReport()
    pages = pages_edited_since(services, since, limit)
    if logger:
        logger.info("Starting category notification backfill", since=since.isoformat(), pages=len(pages))

    for page_id, oldest in pages:
        report.outcomes[page_id] = run_category_membership_change(page_id, oldest, services)

    if logger:
        logger.info(
            "Backfill complete",
            pages=len(pages),
            notifications=report.notifications,
            failed=len(report.failed_pages),
        )
    return report
