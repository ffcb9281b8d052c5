"""
Versioned schema migrations.

Each step is idempotent on its own (create-if-missing, add-column-if-missing)
and is recorded in `schema_version` once applied, so `migrate()` can run on
every startup. Steps 2 and 3 bring stores created before the `email` and
`user_id` columns existed up to the current layout, and step 4 makes email
addresses unique regardless of case.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Set

from sqlalchemy import inspect, select, text, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, col

from taskboard.errors import NotFoundError, StorageError
from taskboard.models import SchemaVersion, Task, User, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[[Connection], None]


def column_names(conn: Connection, table: str) -> Set[str]:
    return {column["name"] for column in inspect(conn).get_columns(table)}


def _create_tables(conn: Connection) -> None:
    SQLModel.metadata.create_all(conn)


def _add_user_email(conn: Connection) -> None:
    if "email" in column_names(conn, "users"):
        logger.info("email column already exists in users.")
        return
    logger.info("Adding email column to users table...")
    conn.execute(text("ALTER TABLE users ADD COLUMN email TEXT"))


def _add_task_owner(conn: Connection) -> None:
    if "user_id" in column_names(conn, "tasks"):
        logger.info("user_id column already exists in tasks.")
        return
    logger.info("Adding user_id column to tasks...")
    conn.execute(
        text("ALTER TABLE tasks ADD COLUMN user_id INTEGER REFERENCES users(id) ON DELETE CASCADE")
    )
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_user_id ON tasks (user_id)"))


def _unique_user_email(conn: Connection) -> None:
    duplicates = conn.execute(
        text(
            "SELECT lower(email) FROM users WHERE email IS NOT NULL "
            "GROUP BY lower(email) HAVING count(*) > 1"
        )
    ).scalars().all()
    if duplicates:
        raise StorageError(f"Email addresses shared by several users: {', '.join(duplicates)}")
    conn.execute(
        text("CREATE UNIQUE INDEX IF NOT EXISTS ux_users_email_lower ON users (lower(email))")
    )


MIGRATIONS: List[Migration] = [
    Migration(1, "create tables", _create_tables),
    Migration(2, "add users.email", _add_user_email),
    Migration(3, "add tasks.user_id", _add_task_owner),
    Migration(4, "unique users.email", _unique_user_email),
]


def current_version(conn: Connection) -> int:
    if not inspect(conn).has_table(SchemaVersion.__tablename__):
        return 0
    versions = conn.execute(select(SchemaVersion.version)).scalars().all()
    return max(versions, default=0)


def migrate(engine: Engine) -> List[int]:
    """
    Applies every pending migration and returns the versions applied.
    """
    applied = []
    try:
        with engine.begin() as conn:
            SchemaVersion.__table__.create(conn, checkfirst=True)
            version = current_version(conn)
            for migration in MIGRATIONS:
                if migration.version <= version:
                    continue
                logger.info("Applying migration %d: %s", migration.version, migration.name)
                migration.apply(conn)
                conn.execute(
                    SchemaVersion.__table__.insert().values(
                        version=migration.version, name=migration.name, applied_at=utcnow()
                    )
                )
                applied.append(migration.version)
    except SQLAlchemyError as exc:
        logger.exception("Migration error")
        raise StorageError("Migration failed") from exc

    if applied:
        logger.info("Migration finished; applied %s", applied)
    else:
        logger.debug("Schema is up to date")
    return applied


def assign_orphan_tasks(engine: Engine, username: str) -> int:
    """
    Gives every task without an owner to `username`. Returns the number of tasks claimed.
    """
    with engine.begin() as conn:
        user_id = conn.execute(
            select(User.id).where(User.username == username)
        ).scalar_one_or_none()
        if user_id is None:
            raise NotFoundError(f'User not found with username="{username}"')
        result = conn.execute(
            update(Task).where(col(Task.user_id).is_(None)).values(user_id=user_id)
        )
    logger.info("Assigned %d orphan tasks to user id=%s (%s)", result.rowcount, user_id, username)
    return result.rowcount
