from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from spendtrail.core.config import settings

_url = make_url(settings.database_url)
_is_sqlite = _url.drivername.startswith("sqlite")
_connect_args: dict = {}
if _is_sqlite:
    # Conditional expense writes from parallel requests wait on the file lock instead of failing.
    _connect_args = {"check_same_thread": False, "timeout": settings.sqlite_busy_timeout_seconds}

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args)

if _is_sqlite:

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def db_session() -> Generator[Session, None, None]:
    """Request-scoped session; services commit their own units of work."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
