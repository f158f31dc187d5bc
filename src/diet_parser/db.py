"""Database engine and session handling.

A ``Database`` owns one engine and its session factory. It is created once by
the service factory and passed to whoever needs it; there is no module-level
engine.

Example:
    >>> db = Database("sqlite:///recipes.db")
    >>> db.create_all()
    >>> with db.session() as session:
    ...     session.add(recipe)
    ...     session.commit()
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine plus session factory for one database URL.

    In-memory SQLite URLs share a single connection so every session sees
    the same data.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite") and (url.endswith(":memory:") or url == "sqlite://"):
            kwargs["connect_args"] = {"check_same_thread": False}
            kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(url, **kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        from . import models  # noqa: F401  registers tables on Base.metadata

        Base.metadata.create_all(self.engine)
        logger.debug(f"Schema ready at {self.url}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session, rolling back on error and closing afterwards."""
        session = self._session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
