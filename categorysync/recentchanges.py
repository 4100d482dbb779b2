"""
Recent changes: the notification sink and convergence history.

Categorize rows are written here, and the newest of them for a page is
the checkpoint later runs start from.
"""

import weakref
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import event, exists, func, select
from sqlalchemy.orm import Session

from .database import (
    NS_CATEGORY,
    RC_CATEGORIZE,
    SRC_CATEGORIZE,
    RecentChange,
    Revision,
    TemplateLink,
)
from .logger import StructuredLogger, get_logger
from .revisions import PageRecord, RevisionRecord, find_page


def serialize_change(rc: RecentChange) -> dict:
    """JSON-ready form of a recent change, as sent to feeds."""
    return {
        "id": rc.rc_id,
        "type": "categorize",
        "timestamp": rc.rc_timestamp.isoformat() if rc.rc_timestamp else None,
        "namespace": rc.rc_namespace,
        "title": rc.rc_title,
        "cur_id": rc.rc_cur_id,
        "revision": {"new": rc.rc_this_oldid, "old": rc.rc_last_oldid},
        "user": rc.rc_user_text,
        "comment": rc.rc_comment,
        "params": rc.rc_params or {},
    }


class RecentChangesSink:
    """
    Records categorize changes and answers checkpoint queries.

    Feeds (objects with ``send(entries)``) receive the serialized changes
    of a session only after that session commits; a rollback discards them.
    Inside ``deferred_delivery`` committed batches are held back until the
    block exits.
    """

    def __init__(self, feeds: Sequence = (), logger: Optional[StructuredLogger] = None):
        self.feeds = list(feeds)
        self.logger = logger or get_logger()
        self._pending = {}
        self._deferred = {}
        self._listening = weakref.WeakSet()

    def record_categorization(
        self,
        session: Session,
        *,
        timestamp: datetime,
        category: str,
        page: PageRecord,
        revision: RevisionRecord,
        added: bool,
        template_links: int = 0,
    ) -> RecentChange:
        category_page = find_page(session, NS_CATEGORY, category)
        rc = RecentChange(
            rc_timestamp=timestamp,
            rc_namespace=NS_CATEGORY,
            rc_title=category,
            rc_cur_id=category_page.page_id if category_page else 0,
            rc_this_oldid=revision.rev_id,
            rc_last_oldid=revision.parent_id or 0,
            rc_type=RC_CATEGORIZE,
            rc_source=SRC_CATEGORIZE,
            rc_user_text=revision.user_text,
            rc_deleted=revision.deleted,
            rc_comment=_categorize_comment(page, added, template_links),
            rc_params={
                "added": added,
                "page_id": page.page_id,
                "page_namespace": page.namespace,
                "page_title": page.title,
                "template_links": template_links,
            },
        )
        session.add(rc)
        if self.feeds:
            session.flush()
            self._queue_for_feeds(session, serialize_change(rc))
        return rc

    def latest_categorized_revision(
        self, session: Session, page_id: int, cutoff: datetime
    ) -> Optional[Tuple[datetime, int]]:
        """
        Newest (timestamp, rev_id) of the page at or after ``cutoff`` that
        already has a categorize notification.
        """
        has_categorize_row = exists().where(
            RecentChange.rc_this_oldid == Revision.rev_id,
            RecentChange.rc_source == SRC_CATEGORIZE,
        )
        row = (
            session.query(Revision.timestamp, Revision.rev_id)
            .filter(
                Revision.page_id == page_id,
                Revision.timestamp >= cutoff,
                has_categorize_row,
            )
            .order_by(Revision.timestamp.desc(), Revision.rev_id.desc())
            .first()
        )
        if row is None:
            return None
        return row[0], int(row[1])

    def changes_for_page(self, session: Session, page_id: int, limit: int = 50) -> List[RecentChange]:
        """Categorize changes triggered by edits of one page, newest first."""
        revision_ids = select(Revision.rev_id).where(Revision.page_id == page_id)
        return (
            session.query(RecentChange)
            .filter(
                RecentChange.rc_source == SRC_CATEGORIZE,
                RecentChange.rc_this_oldid.in_(revision_ids),
            )
            .order_by(RecentChange.rc_timestamp.desc(), RecentChange.rc_id.desc())
            .limit(limit)
            .all()
        )

    def count_template_links(self, session: Session, page: PageRecord) -> int:
        """Number of pages transcluding ``page``."""
        return (
            session.query(func.count())
            .select_from(TemplateLink)
            .filter(TemplateLink.tl_namespace == page.namespace, TemplateLink.tl_title == page.title)
            .scalar()
            or 0
        )

    # Feed dispatch

    def _queue_for_feeds(self, session: Session, entry: dict) -> None:
        if session not in self._listening:
            event.listen(session, "after_commit", self._deliver)
            event.listen(session, "after_soft_rollback", self._discard)
            self._listening.add(session)
        self._pending.setdefault(id(session), []).append(entry)

    @contextmanager
    def deferred_delivery(self, session: Session):
        """Hold back feed delivery of ``session``'s commits until the block exits."""
        batches = self._deferred[id(session)] = []
        try:
            yield
        finally:
            del self._deferred[id(session)]
            for entries in batches:
                self._send(entries)

    def _deliver(self, session: Session) -> None:
        entries = self._pending.pop(id(session), [])
        if not entries:
            return
        deferred = self._deferred.get(id(session))
        if deferred is not None:
            deferred.append(entries)
        else:
            self._send(entries)

    def _send(self, entries: List[dict]) -> None:
        for feed in self.feeds:
            feed.send(entries)

    def _discard(self, session: Session, previous_transaction) -> None:
        dropped = self._pending.pop(id(session), [])
        if dropped:
            self.logger.debug("Discarded undelivered feed entries after rollback", count=len(dropped))


class CategoryMembershipChange:
    """
    Notifications for the category changes one revision caused.

    Call ``check_template_links`` first when the page may be transcluded:
    a positive count marks the notifications as affecting other pages too.
    """

    def __init__(self, sink: RecentChangesSink, session: Session, page: PageRecord, revision: RevisionRecord):
        self.sink = sink
        self.session = session
        self.page = page
        self.revision = revision
        self.template_links = 0

    def check_template_links(self) -> int:
        self.template_links = self.sink.count_template_links(self.session, self.page)
        return self.template_links

    def trigger_category_added_notification(self, category: str) -> RecentChange:
        return self._notify(category, added=True)

    def trigger_category_removed_notification(self, category: str) -> RecentChange:
        return self._notify(category, added=False)

    def _notify(self, category: str, added: bool) -> RecentChange:
        return self.sink.record_categorization(
            self.session,
            timestamp=self.revision.timestamp,
            category=category,
            page=self.page,
            revision=self.revision,
            added=added,
            template_links=self.template_links,
        )


def _categorize_comment(page: PageRecord, added: bool, template_links: int) -> str:
    verb = "added to" if added else "removed from"
    comment = f"[[:{page.display_title}]] {verb} category"
    if template_links:
        comment += f", [[Special:WhatLinksHere/{page.display_title}|this page is included within other pages]]"
    return comment
