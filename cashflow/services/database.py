"""
Database Setup

One SQLAlchemy engine per process, one short-lived Session per repository
call. Repositories run their blocking Session work in a worker thread, so
SQLite connections are opened with check_same_thread=False.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from cashflow.config import DatabaseSettings


class Base(DeclarativeBase):
    pass


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    """Create the process-wide engine."""
    kwargs = {"echo": settings.echo}

    if settings.url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # An in-memory database only lives as long as its single connection
        if settings.url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    return create_engine(settings.url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables."""
    # Import models so they register with Base.metadata
    from cashflow.services.ledger import sql  # noqa: F401
    from cashflow.transactions import repository  # noqa: F401

    Base.metadata.create_all(bind=engine)
