"""SQLite engine for usage events and pace samples."""

from __future__ import annotations

import logging
import os
import pathlib
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger("usagewatch.storage")

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_DB_PATH = BASE_DIR.parent / "data" / "usagewatch.db"

SessionLocal = sessionmaker(
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
_engine: Engine | None = None


class Base(DeclarativeBase):
    pass


def _database_path(path: pathlib.Path | None) -> pathlib.Path:
    if path is not None:
        return path.expanduser()
    override = os.getenv("USAGEWATCH_DB")
    return pathlib.Path(override).expanduser() if override else DEFAULT_DB_PATH


def init_db(path: pathlib.Path | None = None) -> Engine:
    """Bind sessions to the history database and create missing tables.

    ``USAGEWATCH_DB`` overrides the default location when no path is given.
    """
    global _engine
    from usagewatch.storage import models  # noqa: F401

    db_path = _database_path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal.configure(bind=_engine)
    Base.metadata.create_all(bind=_engine)
    logger.info("Database ready", extra={"event": "db_ready", "path": str(db_path)})
    return _engine


@contextmanager
def session_scope():
    """Provide a transactional scope around a series of operations."""
    if _engine is None:
        init_db()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
