"""
Revision Category Differ.

Responsibilities:
- Render a revision and its parent with one shared timestamp.
- Return the category membership delta between them.

Non-Responsibilities:
- No notifications; the emitter acts on the delta.

Invariant:
A text-deleted revision on either side yields an empty delta.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional

from sqlalchemy.orm import Session

from .logger import StructuredLogger, get_logger
from .render import ParserCache, ParserOptions, RevisionRenderer, TemplateSource
from .revisions import DELETED_TEXT, PageRecord, RevisionRecord, get_revision_by_id


@dataclass(frozen=True)
class CategoryDelta:
    insertions: FrozenSet[str] = field(default_factory=frozenset)
    deletions: FrozenSet[str] = field(default_factory=frozenset)

    def __bool__(self) -> bool:
        return bool(self.insertions or self.deletions)

    def __len__(self) -> int:
        return len(self.insertions) + len(self.deletions)


EMPTY_DELTA = CategoryDelta()


def diff_categories(old: Iterable, new: Iterable) -> CategoryDelta:
    old_set = {str(name) for name in old}
    new_set = {str(name) for name in new}
    return CategoryDelta(frozenset(new_set - old_set), frozenset(old_set - new_set))


class RevisionCategoryDiffer:
    """
    Computes category deltas for the revisions of one convergence run.

    Args:
        renderer: Rendering pipeline for revision content
        parser_cache: Cache consulted for the page's current revision
        primary: Session used to load parent revisions at full consistency
        snapshot: Session whose snapshot serves cache and template reads
        templates: Template text source for transclusion
    """

    def __init__(
        self,
        renderer: RevisionRenderer,
        parser_cache: Optional[ParserCache],
        primary: Session,
        snapshot: Session,
        templates: Optional[TemplateSource] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.renderer = renderer
        self.parser_cache = parser_cache
        self.primary = primary
        self.snapshot = snapshot
        self.templates = templates
        self.logger = logger or get_logger()

    def delta_for_revision(self, page: PageRecord, new_rev: RevisionRecord) -> CategoryDelta:
        if new_rev.is_deleted(DELETED_TEXT):
            self.logger.debug("Skipping text-deleted revision", rev_id=new_rev.rev_id)
            return EMPTY_DELTA

        old_rev = None
        if new_rev.parent_id:
            old_rev = get_revision_by_id(self.primary, new_rev.parent_id)
            if old_rev is None or old_rev.is_deleted(DELETED_TEXT):
                self.logger.debug(
                    "Skipping revision with missing or hidden parent",
                    rev_id=new_rev.rev_id,
                    parent_id=new_rev.parent_id,
                )
                return EMPTY_DELTA

        return self.explicit_category_changes(page, new_rev, old_rev)

    def explicit_category_changes(
        self, page: PageRecord, new_rev: RevisionRecord, old_rev: Optional[RevisionRecord]
    ) -> CategoryDelta:
        # Both sides use the new revision's timestamp, so time-based content
        # renders identically and only real edits show up in the delta.
        parse_timestamp = new_rev.timestamp
        old_categories = (
            self.categories_at_revision(page, old_rev, parse_timestamp) if old_rev else []
        )
        new_categories = self.categories_at_revision(page, new_rev, parse_timestamp)
        return diff_categories(old_categories, new_categories)

    def categories_at_revision(
        self, page: PageRecord, rev: RevisionRecord, parse_timestamp: datetime
    ) -> List[str]:
        options = ParserOptions.for_page(page, parse_timestamp)

        output = None
        if self.parser_cache is not None and rev.rev_id == page.latest_rev_id:
            output = self.parser_cache.get(self.snapshot, page, options)
        if output is None or output.cache_revision_id != rev.rev_id:
            output = self.renderer.render(rev, options, self.templates)

        return output.category_names()
