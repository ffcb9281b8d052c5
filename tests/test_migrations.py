import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from taskboard.database import create_db_engine
from taskboard.errors import NotFoundError, StorageError
from taskboard.migrations import MIGRATIONS, assign_orphan_tasks, column_names, current_version, migrate
from taskboard.models import Task, User

LEGACY_SCHEMA = [
    """
    CREATE TABLE users (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      username TEXT NOT NULL UNIQUE,
      password_hash TEXT NOT NULL,
      created_at TEXT DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE tasks (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      title TEXT NOT NULL,
      description TEXT,
      due_date TEXT,
      priority INTEGER DEFAULT 2,
      completed INTEGER DEFAULT 0,
      created_at TEXT DEFAULT (datetime('now'))
    )
    """,
]


@pytest.fixture(name="legacy_engine")
def legacy_engine_fixture():
    engine = create_db_engine("sqlite:///:memory:", echo=False)
    with engine.begin() as conn:
        for statement in LEGACY_SCHEMA:
            conn.execute(text(statement))
        conn.execute(text("INSERT INTO users (username, password_hash) VALUES ('olduser', 'x')"))
        conn.execute(text("INSERT INTO tasks (title) VALUES ('legacy one'), ('legacy two')"))
    yield engine
    engine.dispose()


def test_fresh_database_gets_every_table(test_engine):
    inspector = inspect(test_engine)
    for table in ("users", "tasks", "sessions", "schema_version"):
        assert inspector.has_table(table)
    with test_engine.connect() as conn:
        assert current_version(conn) == MIGRATIONS[-1].version


def test_migrate_is_idempotent(test_engine):
    assert migrate(test_engine) == []


def test_legacy_schema_is_upgraded(legacy_engine):
    assert migrate(legacy_engine) == [1, 2, 3, 4]

    with legacy_engine.connect() as conn:
        assert "email" in column_names(conn, "users")
        assert "user_id" in column_names(conn, "tasks")
        assert inspect(conn).has_table("sessions")
        orphans = conn.execute(text("SELECT count(*) FROM tasks WHERE user_id IS NULL")).scalar()
    assert orphans == 2

    assert migrate(legacy_engine) == []


def test_assign_orphan_tasks(legacy_engine):
    migrate(legacy_engine)

    assert assign_orphan_tasks(legacy_engine, "olduser") == 2
    assert assign_orphan_tasks(legacy_engine, "olduser") == 0

    with Session(legacy_engine) as db:
        owner = db.exec(select(User).where(User.username == "olduser")).one()
        tasks = db.exec(select(Task)).all()
        assert {t.user_id for t in tasks} == {owner.id}


def test_assign_orphan_tasks_unknown_user(legacy_engine):
    migrate(legacy_engine)
    with pytest.raises(NotFoundError):
        assign_orphan_tasks(legacy_engine, "ghost")


def test_cascade_applies_after_migration(legacy_engine):
    migrate(legacy_engine)
    assign_orphan_tasks(legacy_engine, "olduser")

    with legacy_engine.begin() as conn:
        conn.execute(text("DELETE FROM users WHERE username = 'olduser'"))
        remaining = conn.execute(text("SELECT count(*) FROM tasks")).scalar()
    assert remaining == 0


def test_email_is_unique_ignoring_case(test_engine):
    with pytest.raises(IntegrityError):
        with test_engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO users (username, password_hash, email, created_at) VALUES "
                    "('one', 'x', 'same@example.com', '2026-01-01'), "
                    "('two', 'x', 'SAME@example.com', '2026-01-01')"
                )
            )


def test_duplicate_legacy_emails_block_the_unique_step(legacy_engine):
    with legacy_engine.begin() as conn:
        conn.execute(text("ALTER TABLE users ADD COLUMN email TEXT"))
        conn.execute(
            text(
                "INSERT INTO users (username, password_hash, email) VALUES "
                "('a', 'x', 'dup@example.com'), ('b', 'x', 'Dup@Example.com')"
            )
        )

    with pytest.raises(StorageError, match="dup@example.com"):
        migrate(legacy_engine)
    with legacy_engine.connect() as conn:
        assert current_version(conn) == 0

    with legacy_engine.begin() as conn:
        conn.execute(text("UPDATE users SET email = NULL WHERE username = 'b'"))
    assert migrate(legacy_engine) == [1, 2, 3, 4]
