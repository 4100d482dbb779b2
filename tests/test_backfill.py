"""
Tests for backfill.py - replaying convergence for recently edited pages.
"""

from categorysync.backfill import backfill_category_changes, pages_edited_since
from categorysync.jobqueue import JobStatus

from .conftest import T0, seconds


class TestBackfill:
    def test_pages_ordered_by_oldest_edit(self, wiki, services):
        late = wiki.create_page("Late")
        early = wiki.create_page("Early")
        stale = wiki.create_page("Stale")
        wiki.edit(stale, "", T0 - seconds(3600))
        wiki.edit(late, "", T0 + seconds(20))
        wiki.edit(early, "", T0 + seconds(5))
        wiki.edit(late, "", T0 + seconds(30))

        pages = pages_edited_since(services, T0)

        assert pages == [(early, T0 + seconds(5)), (late, T0 + seconds(20))]
        assert pages_edited_since(services, T0, limit=1) == [(early, T0 + seconds(5))]

    def test_backfill_runs_every_page(self, wiki, services):
        a = wiki.create_page("A")
        b = wiki.create_page("B")
        wiki.edit(a, "[[Category:X]]", T0)
        wiki.edit(a, "[[Category:Y]]", T0 + seconds(10))
        wiki.edit(b, "[[Category:Z]]", T0 + seconds(5))

        report = backfill_category_changes(services, T0)

        assert set(report.outcomes) == {a, b}
        assert all(o.status is JobStatus.SUCCESS for o in report.outcomes.values())
        assert report.notifications == 4
        assert report.failed_pages == []

    def test_backfill_is_idempotent(self, wiki, services):
        page_id = wiki.create_page("A")
        wiki.edit(page_id, "[[Category:X]]", T0)

        backfill_category_changes(services, T0)
        again = backfill_category_changes(services, T0)

        assert again.notifications == 0
        assert len(wiki.categorize_rows(page_id)) == 1

    def test_failed_pages_are_reported(self, wiki, services):
        page_id = wiki.create_page("A")
        wiki.edit(page_id, "[[Category:X]]", T0)
        key = f"testwiki:CategoryMembershipChange:{page_id}"
        services.cluster.lock_manager.acquire(key, 1)
        try:
            report = backfill_category_changes(services, T0)
        finally:
            services.cluster.lock_manager.release(key)

        assert report.failed_pages == [page_id]
        assert report.outcomes[page_id].retryable
