from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from tracker.config import settings

_SQLITE_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}


class Base(DeclarativeBase):
    """Base class for the cache and history tables."""


def _sqlite_journal_mode() -> str:
    mode = settings.sqlite_journal_mode.strip().upper()
    return mode if mode in _SQLITE_JOURNAL_MODES else "WAL"


def build_engine(database_url: str) -> Engine:
    """Create an engine, applying busy-timeout and journal pragmas on SQLite."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, future=True)

    timeout_ms = max(settings.sqlite_busy_timeout_ms, 0)
    sqlite_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": timeout_ms / 1000.0},
        future=True,
    )

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout={timeout_ms}")
        cursor.execute(f"PRAGMA journal_mode={_sqlite_journal_mode()}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return sqlite_engine


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, class_=Session
)


def init_db() -> None:
    """Create the price cache and history tables if they do not exist."""
    from tracker import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped SQLAlchemy session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
