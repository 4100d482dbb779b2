"""
Tests for window.py - which revisions a run still has to process.
"""

import pytest

from categorysync.database import get_session
from categorysync.revisions import PageRecord, RevisionRecord
from categorysync.window import resolve_window

from .conftest import T0, seconds


@pytest.fixture
def session(engine):
    session = get_session(engine)
    yield session
    session.close()


def notify(sink, session, page_id, rev_id, at, category="A"):
    """Record a categorize row as an earlier run would have."""
    page = PageRecord(page_id, 0, "Page", rev_id)
    revision = RevisionRecord(rev_id, page_id, None, at)
    sink.record_categorization(session, timestamp=at, category=category, page=page, revision=revision, added=True)
    session.commit()


class TestResolveWindow:
    def test_without_checkpoint_uses_fudge_cutoff(self, wiki, session, sink):
        page_id = wiki.create_page("Page")
        old = wiki.edit(page_id, "", T0 - seconds(120))
        recent = wiki.edit(page_id, "", T0 - seconds(30))
        trigger = wiki.edit(page_id, "", T0)

        window = resolve_window(session, sink, page_id, T0, fudge_seconds=60)

        assert window.cutoff == T0 - seconds(60)
        assert window.tiebreak_rev_id == 0
        assert [r.rev_id for r in window.revisions] == [recent, trigger]
        assert old not in [r.rev_id for r in window.revisions]

    def test_checkpoint_moves_cutoff_forward(self, wiki, session, sink):
        page_id = wiki.create_page("Page")
        done = wiki.edit(page_id, "", T0 - seconds(30))
        pending = wiki.edit(page_id, "", T0)
        notify(sink, session, page_id, done, T0 - seconds(30))

        window = resolve_window(session, sink, page_id, T0, fudge_seconds=60)

        assert window.cutoff == T0 - seconds(30)
        assert window.tiebreak_rev_id == done
        assert [r.rev_id for r in window.revisions] == [pending]

    def test_checkpoint_before_fudge_window_is_ignored(self, wiki, session, sink):
        page_id = wiki.create_page("Page")
        done = wiki.edit(page_id, "", T0 - seconds(600))
        pending = wiki.edit(page_id, "", T0)
        notify(sink, session, page_id, done, T0 - seconds(600))

        window = resolve_window(session, sink, page_id, T0, fudge_seconds=60)

        assert window.cutoff == T0 - seconds(60)
        assert [r.rev_id for r in window.revisions] == [pending]

    def test_same_timestamp_uses_rev_id_tiebreak(self, wiki, session, sink):
        page_id = wiki.create_page("Page")
        wiki.edit(page_id, "", T0, rev_id=5)
        wiki.edit(page_id, "", T0, rev_id=7)
        notify(sink, session, page_id, 5, T0)

        window = resolve_window(session, sink, page_id, T0, fudge_seconds=60)

        assert (window.cutoff, window.tiebreak_rev_id) == (T0, 5)
        assert [r.rev_id for r in window.revisions] == [7]

    def test_revisions_are_ordered_by_timestamp_then_id(self, wiki, session, sink):
        page_id = wiki.create_page("Page")
        wiki.edit(page_id, "", T0, rev_id=30)
        wiki.edit(page_id, "", T0 - seconds(5), rev_id=40)
        wiki.edit(page_id, "", T0, rev_id=20)

        window = resolve_window(session, sink, page_id, T0, fudge_seconds=60)

        assert [r.rev_id for r in window.revisions] == [40, 20, 30]

    def test_other_pages_are_ignored(self, wiki, session, sink):
        page_id = wiki.create_page("Page")
        other_id = wiki.create_page("Other")
        wiki.edit(other_id, "", T0)

        window = resolve_window(session, sink, page_id, T0, fudge_seconds=60)

        assert not window
        assert window.revisions == []

    def test_fully_converged_page_yields_empty_window(self, wiki, session, sink):
        page_id = wiki.create_page("Page")
        rev = wiki.edit(page_id, "", T0)
        notify(sink, session, page_id, rev, T0)

        window = resolve_window(session, sink, page_id, T0, fudge_seconds=60)

        assert not window
