import logging
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from taskboard.config import get_settings

# Make sure to import models to register them with SQLModel.metadata
from taskboard import models  # noqa: F401

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Creates the engine for the given URL, falling back to DATABASE_URL.
    """
    settings = get_settings()
    url = database_url or settings.database_url
    if echo is None:
        echo = settings.database_echo

    kwargs = {"echo": echo}
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # Every checkout must see the same in-memory database
            kwargs["poolclass"] = StaticPool

    # Log a redacted version for verification, not the whole URL
    logger.info("Connecting to database: %s...", url[:15])
    engine = create_engine(url, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def get_session(request: Request) -> Generator[Session, None, None]:
    """
    Request-scoped database session bound to the application's engine.
    """
    with Session(request.app.state.engine) as session:
        yield session
