"""
Database schema and connection management.

Uses SQLite with SQLAlchemy as the authoritative store for jobs and companies.
Every row carries the id of the user who created it.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class JobRecord(TimestampMixin, Base):
    """Job application row."""

    __tablename__ = "jobs"

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    company = Column(String, nullable=False)
    status = Column(String, nullable=False, default="wishlist")
    notes = Column(Text, nullable=False, default="")
    position = Column(JSON, nullable=False, default=lambda: {"x": 0, "y": 0})


class CompanyRecord(TimestampMixin, Base):
    """Tracked company row."""

    __tablename__ = "companies"

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    company = Column(String, nullable=False, default="")
    custom_company = Column(String, nullable=False, default="")
    starred = Column(Boolean, nullable=False, default=False)
    updated = Column(Boolean, nullable=False, default=False)
    last_updated = Column(String, nullable=True)


def create_db_engine(db_path: Path) -> Engine:
    """
    Create an engine for the SQLite file at ``db_path``.

    The API serves requests from a thread pool, so connections may not be
    pinned to the thread that opened them.
    """
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )


def init_database(db_path: Path) -> Engine:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Engine bound to the database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(db_path)
    Base.metadata.create_all(engine)
    return engine


def session_factory(engine: Engine) -> sessionmaker:
    """
    Session factory bound to ``engine``.

    Loaded attributes stay readable after commit, so rows can be turned into
    entities once their session is closed.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)
