"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta
from typing import Optional

from categorysync.cluster import DatabaseCluster
from categorysync.config import JobConfig
from categorysync.database import (
    NS_CATEGORY,
    NS_MAIN,
    Page,
    RecentChange,
    Revision,
    SRC_CATEGORIZE,
    get_session,
    init_database,
    sqlite_url,
)
from categorysync.job import JobServices
from categorysync.logger import StructuredLogger, get_logger, reset_logger
from categorysync.recentchanges import RecentChangesSink
from categorysync.render import ParserCache, RevisionRenderer
from categorysync.revisions import load_page

T0 = datetime(2024, 3, 1, 12, 0, 0)


class WikiBuilder:
    """Creates pages and revisions the way the editing path would."""

    def __init__(self, engine):
        self.engine = engine
        self._next_rev_id = 100

    def create_page(self, title: str, namespace: int = NS_MAIN) -> int:
        session = get_session(self.engine)
        page = Page(namespace=namespace, title=title, latest_rev_id=0)
        session.add(page)
        session.commit()
        page_id = page.page_id
        session.close()
        return page_id

    def edit(
        self,
        page_id: int,
        text: str,
        at: datetime,
        rev_id: Optional[int] = None,
        deleted: int = 0,
        content_model: str = "wikitext",
        user: str = "Editor",
    ) -> int:
        session = get_session(self.engine)
        page = session.get(Page, page_id)
        if rev_id is None:
            rev_id = self._next_rev_id
        self._next_rev_id = max(self._next_rev_id, rev_id) + 1
        session.add(
            Revision(
                rev_id=rev_id,
                page_id=page_id,
                parent_id=page.latest_rev_id or None,
                timestamp=at,
                deleted=deleted,
                user_text=user,
                content_model=content_model,
                text=text,
            )
        )
        page.latest_rev_id = rev_id
        session.commit()
        session.close()
        return rev_id

    def page(self, page_id: int):
        session = get_session(self.engine)
        try:
            return load_page(session, page_id)
        finally:
            session.close()

    def categorize_rows(self, page_id: Optional[int] = None):
        """(rev_id, category, added) for every categorize row, in insertion order."""
        session = get_session(self.engine)
        try:
            query = session.query(RecentChange).filter_by(rc_source=SRC_CATEGORIZE)
            rows = query.order_by(RecentChange.rc_id).all()
            result = []
            for rc in rows:
                if page_id is not None and rc.rc_params["page_id"] != page_id:
                    continue
                result.append((rc.rc_this_oldid, rc.rc_title, rc.rc_params["added"]))
            return result
        finally:
            session.close()


@pytest.fixture(autouse=True)
def isolated_global_logger(tmp_path):
    """Keep code that falls back to the global logger out of the working directory."""
    reset_logger()
    get_logger(log_dir=tmp_path / "logs", enable_console=False)
    yield
    reset_logger()


@pytest.fixture
def db_url(tmp_path) -> str:
    return sqlite_url(tmp_path / "wiki.db")


@pytest.fixture
def engine(db_url):
    engine = init_database(db_url)
    yield engine
    engine.dispose()


@pytest.fixture
def wiki(engine) -> WikiBuilder:
    return WikiBuilder(engine)


@pytest.fixture
def logger(tmp_path) -> StructuredLogger:
    return StructuredLogger(name="categorysync.test", log_dir=tmp_path / "logs", enable_console=False)


@pytest.fixture
def config(db_url, tmp_path) -> JobConfig:
    return JobConfig(
        db_url=db_url,
        domain_id="testwiki",
        fudge_seconds=60,
        batch_size=100,
        lock_timeout=0.1,
        replica_wait_timeout=0.1,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def cluster(engine, logger) -> DatabaseCluster:
    return DatabaseCluster(engine, domain_id="testwiki", replica_wait_timeout=0.1, logger=logger)


@pytest.fixture
def sink(logger) -> RecentChangesSink:
    return RecentChangesSink(logger=logger)


@pytest.fixture
def services(cluster, sink, config, logger) -> JobServices:
    return JobServices(
        cluster=cluster,
        renderer=RevisionRenderer(logger=logger),
        sink=sink,
        config=config,
        parser_cache=ParserCache(),
        logger=logger,
    )


@pytest.fixture
def category_page(wiki):
    """Existing category page for Category:Birds."""
    return wiki.create_page("Birds", namespace=NS_CATEGORY)


def seconds(n: int) -> timedelta:
    return timedelta(seconds=n)
