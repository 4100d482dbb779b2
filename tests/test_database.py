"""
Tests for database.py - schema and engine management.
"""

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from categorysync.database import (
    NS_CATEGORY,
    Page,
    ParserCacheEntry,
    Revision,
    get_session,
    init_database,
    sqlite_url,
)

from .conftest import T0


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        db_path = tmp_path / "wiki.db"
        assert not db_path.exists()

        init_database(sqlite_url(db_path)).dispose()

        assert db_path.exists()

    def test_init_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "wiki.db"
        assert not db_path.parent.exists()

        init_database(sqlite_url(db_path)).dispose()

        assert db_path.exists()

    def test_init_creates_tables(self, engine):
        tables = set(inspect(engine).get_table_names())

        assert {"pages", "revisions", "recent_changes", "parser_cache", "template_links"} <= tables

    def test_init_is_idempotent(self, db_url, engine):
        session = get_session(engine)
        session.add(Page(namespace=0, title="Kept", latest_rev_id=0))
        session.commit()
        session.close()

        init_database(db_url).dispose()

        session = get_session(engine)
        assert session.query(Page).count() == 1
        session.close()


class TestModels:
    def test_page_title_unique_per_namespace(self, engine):
        session = get_session(engine)
        session.add(Page(namespace=0, title="Birds", latest_rev_id=0))
        session.add(Page(namespace=NS_CATEGORY, title="Birds", latest_rev_id=0))
        session.commit()

        session.add(Page(namespace=0, title="Birds", latest_rev_id=0))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()
        session.close()

    def test_revision_defaults(self, engine):
        session = get_session(engine)
        session.add(Revision(rev_id=1, page_id=1, timestamp=T0))
        session.commit()

        rev = session.get(Revision, 1)
        assert rev.parent_id is None
        assert rev.deleted == 0
        assert rev.content_model == "wikitext"
        assert rev.text == ""
        session.close()

    def test_parser_cache_entry_timestamps_itself(self, engine):
        session = get_session(engine)
        session.add(ParserCacheEntry(page_id=1, options_key="k", rev_id=1, categories={"A": ""}))
        session.commit()

        entry = session.get(ParserCacheEntry, (1, "k"))
        assert entry.cached_at is not None
        assert entry.categories == {"A": ""}
        session.close()
