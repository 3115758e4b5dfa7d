"""Database engine, session factory, and request-scoped session dependency.

Nothing here is a module-level singleton: ``create_app()`` and the CLI build
an engine and a session factory and pass them along explicitly.
"""

from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from promptstash.core.config import Settings, settings as default_settings


def build_engine(url: str, app_settings: Settings = default_settings) -> Engine:
    """Create a pooled engine for the given database URL."""
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={
                "check_same_thread": False,
                "timeout": app_settings.TRANSACTION_TIMEOUT_MS / 1000,
            },
            echo=app_settings.DEBUG,
        )
        _configure_sqlite(engine)
        return engine

    return create_engine(
        url,
        pool_size=app_settings.DB_POOL_SIZE,
        max_overflow=app_settings.DB_MAX_OVERFLOW,
        pool_timeout=app_settings.DB_POOL_TIMEOUT,
        pool_recycle=app_settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        # every SELECT sees the latest commit, so a retried max(version) read
        # observes the row that beat us (MySQL defaults to REPEATABLE READ)
        isolation_level="READ COMMITTED",
        echo=app_settings.DEBUG,
    )


def _configure_sqlite(engine: Engine) -> None:
    """Make pysqlite transactions behave like the server databases.

    SQLAlchemy emits BEGIN itself so SAVEPOINTs nest correctly, and every
    transaction takes the write lock up front: SQLite allows one writer, and
    two deferred read-then-write transactions would deadlock each other.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency that provides a DB session per request."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
