"""
Revision Store.

Responsibilities:
- Read pages and revisions into immutable records.
- Select the revisions of a page past a (timestamp, rev_id) cutoff.
- Resolve template text for rendering.

Non-Responsibilities:
- No writes; revisions are saved by the editing path, not by this job.

Invariant:
Records returned here are snapshots; later edits never mutate them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from .database import NS_TEMPLATE, Page, Revision

DELETED_TEXT = 1
DELETED_COMMENT = 2


@dataclass(frozen=True)
class PageRecord:
    page_id: int
    namespace: int
    title: str
    latest_rev_id: int

    @property
    def display_title(self) -> str:
        return self.title.replace("_", " ")


@dataclass(frozen=True)
class RevisionRecord:
    rev_id: int
    page_id: int
    parent_id: Optional[int]
    timestamp: datetime
    deleted: int = 0
    user_text: str = ""
    content_model: str = "wikitext"
    text: str = ""

    def is_deleted(self, field: int) -> bool:
        return bool(self.deleted & field)

    @classmethod
    def from_row(cls, row: Revision) -> "RevisionRecord":
        return cls(
            rev_id=row.rev_id,
            page_id=row.page_id,
            parent_id=row.parent_id or None,
            timestamp=row.timestamp,
            deleted=row.deleted or 0,
            user_text=row.user_text or "",
            content_model=row.content_model or "wikitext",
            text=row.text or "",
        )


def _page_record(row: Optional[Page]) -> Optional[PageRecord]:
    if row is None:
        return None
    return PageRecord(row.page_id, row.namespace, row.title, row.latest_rev_id)


def load_page(session: Session, page_id: int) -> Optional[PageRecord]:
    return _page_record(session.get(Page, page_id))


def find_page(session: Session, namespace: int, title: str) -> Optional[PageRecord]:
    row = session.query(Page).filter_by(namespace=namespace, title=title).first()
    return _page_record(row)


def get_revision_by_id(session: Session, rev_id: int) -> Optional[RevisionRecord]:
    row = session.get(Revision, rev_id)
    return RevisionRecord.from_row(row) if row is not None else None


def revisions_after(
    session: Session, page_id: int, cutoff: datetime, tiebreak_rev_id: int
) -> List[RevisionRecord]:
    """
    Revisions of a page strictly after (cutoff, tiebreak_rev_id), oldest first.

    A tiebreak of 0 keeps every revision at exactly ``cutoff``.
    """
    rows = (
        session.query(Revision)
        .filter(
            Revision.page_id == page_id,
            or_(
                Revision.timestamp > cutoff,
                and_(Revision.timestamp == cutoff, Revision.rev_id > tiebreak_rev_id),
            ),
        )
        .order_by(Revision.timestamp.asc(), Revision.rev_id.asc())
        .all()
    )
    return [RevisionRecord.from_row(row) for row in rows]


class TemplateLookup:
    """Current text of template pages, read through one session's snapshot."""

    def __init__(self, session: Session):
        self.session = session

    def __call__(self, name: str) -> Optional[str]:
        title = name.strip().replace(" ", "_")
        if not title:
            return None
        title = title[0].upper() + title[1:]
        page = find_page(self.session, NS_TEMPLATE, title)
        if page is None or not page.latest_rev_id:
            return None
        rev = get_revision_by_id(self.session, page.latest_rev_id)
        if rev is None or rev.is_deleted(DELETED_TEXT):
            return None
        return rev.text
