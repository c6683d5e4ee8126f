"""Centralized SQLAlchemy engine/session helpers for the workspace.

Usage
-----
from db.client import get_session_factory

with get_session_factory().begin() as s:
    s.execute(...)

Callers that need an isolated engine (tests, the CLI, the HTTP app factory)
use ``make_session_factory(url)`` instead of the process-wide engine.
"""

from __future__ import annotations

import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINE: Engine | None = None
_SESSION_MAKER: sessionmaker[Session] | None = None
_DB_URL: str | None = None


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


def _create_engine(url: str) -> Engine:
    engine = create_engine(url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        # SQLite ships with FK enforcement off; split children cascade on it.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):  # pragma: no cover - tiny bridge
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.close()

    return engine


def make_session_factory(database_url: str | None = None) -> sessionmaker[Session]:
    """Return a new ``sessionmaker`` bound to its own engine."""

    engine = _create_engine(_database_url(database_url))
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return a shared SQLAlchemy engine, creating it on first use."""

    global _ENGINE, _SESSION_MAKER, _DB_URL
    url = _database_url(database_url)
    if _ENGINE is None:
        engine = _create_engine(url)
        _SESSION_MAKER = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
        _ENGINE = engine
        _DB_URL = url
        return engine
    # Engine already initialized; guard against cross-environment misuse.
    if _DB_URL is not None and url != _DB_URL:
        raise RuntimeError(
            "get_engine() already initialized with a different DATABASE_URL; "
            "restart the process or avoid passing a different URL"
        )
    return _ENGINE


def get_session_factory(*, database_url: str | None = None) -> sessionmaker[Session]:
    """Return the shared ``sessionmaker`` bound to the process-wide engine."""

    get_engine(database_url=database_url)
    assert _SESSION_MAKER is not None  # bound by get_engine
    return _SESSION_MAKER


__all__ = [
    "get_engine",
    "get_session_factory",
    "make_session_factory",
]
