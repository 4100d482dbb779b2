"""
Database schema and engine management.

Uses SQLAlchemy so the same models work against SQLite (single node,
tests), PostgreSQL and MySQL primaries with replicas.
"""

from datetime import datetime, timezone
from pathlib import Path
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

NS_MAIN = 0
NS_TEMPLATE = 10
NS_CATEGORY = 14

RC_CATEGORIZE = 6
SRC_CATEGORIZE = "mw.categorize"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Page(Base):
    """Wiki page; title is stored in db-key form (underscores)."""

    __tablename__ = "pages"

    page_id = Column(Integer, primary_key=True)
    namespace = Column(Integer, nullable=False, default=NS_MAIN)
    title = Column(String(255), nullable=False)
    latest_rev_id = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("namespace", "title", name="uq_page_name"),)


class Revision(Base):
    """Immutable page revision."""

    __tablename__ = "revisions"

    rev_id = Column(Integer, primary_key=True)
    page_id = Column(Integer, nullable=False)
    parent_id = Column(Integer, nullable=True)  # NULL on page creation
    timestamp = Column(DateTime, nullable=False)
    deleted = Column(Integer, nullable=False, default=0)  # DELETED_* bitfield
    user_text = Column(String(255), nullable=False, default="")
    content_model = Column(String(32), nullable=False, default="wikitext")
    text = Column(Text, nullable=False, default="")

    __table_args__ = (Index("ix_rev_page_timestamp", "page_id", "timestamp", "rev_id"),)


class RecentChange(Base):
    """Recent-changes row; categorize rows double as the convergence checkpoint."""

    __tablename__ = "recent_changes"

    rc_id = Column(Integer, primary_key=True, autoincrement=True)
    rc_timestamp = Column(DateTime, nullable=False)
    rc_namespace = Column(Integer, nullable=False)
    rc_title = Column(String(255), nullable=False)
    rc_cur_id = Column(Integer, nullable=False, default=0)
    rc_this_oldid = Column(Integer, nullable=False, default=0)
    rc_last_oldid = Column(Integer, nullable=False, default=0)
    rc_type = Column(Integer, nullable=False)
    rc_source = Column(String(32), nullable=False)
    rc_user_text = Column(String(255), nullable=False, default="")
    rc_deleted = Column(Integer, nullable=False, default=0)
    rc_comment = Column(Text, nullable=False, default="")
    rc_params = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_rc_this_oldid", "rc_this_oldid"),
        Index("ix_rc_namespace_title_timestamp", "rc_namespace", "rc_title", "rc_timestamp"),
    )


class ParserCacheEntry(Base):
    """Rendered categories of a page's current revision, keyed by options."""

    __tablename__ = "parser_cache"

    page_id = Column(Integer, primary_key=True)
    options_key = Column(String(64), primary_key=True)
    rev_id = Column(Integer, nullable=False)
    categories = Column(JSON, nullable=False)
    cached_at = Column(DateTime, nullable=False, default=_utcnow)


class TemplateLink(Base):
    """Transclusion link: page ``tl_from`` includes ``tl_namespace:tl_title``."""

    __tablename__ = "template_links"

    tl_from = Column(Integer, primary_key=True)
    tl_namespace = Column(Integer, primary_key=True)
    tl_title = Column(String(255), primary_key=True)


def sqlite_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


def make_engine(url: str) -> Engine:
    """
    Create an engine for a database URL.

    SQLite files get their parent directory created on the way.
    """
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, pool_pre_ping=not url.startswith("sqlite"))


def init_database(url: str) -> Engine:
    """
    Initialize database and create tables.

    Args:
        url: SQLAlchemy database URL of the primary

    Returns:
        The engine used to create the schema
    """
    engine = make_engine(url)
    Base.metadata.create_all(engine)
    return engine


def get_session(engine: Engine):
    """
    Get a database session bound to an engine.

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=engine)
    return Session()
