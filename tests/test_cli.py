import logging
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlmodel import Session, select

from taskboard.auth import AuthService
from taskboard.cli import main
from taskboard.database import create_db_engine
from taskboard.migrations import migrate
from taskboard.models import User
from taskboard.sessions import SessionStore


@pytest.fixture(autouse=True)
def restore_root_logging():
    # main() reconfigures the root logger; put the test runner's handlers back
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(name="db_url")
def db_url_fixture(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'taskboard.db'}"


@pytest.fixture(name="seeded_url")
def seeded_url_fixture(db_url: str) -> str:
    engine = create_db_engine(db_url, echo=False)
    migrate(engine)
    with Session(engine) as db:
        AuthService(db, SessionStore(db, ttl=timedelta(hours=24))).register("frank", "secret-pass")
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO tasks (title, priority, completed, created_at) VALUES ('orphan', 2, 0, '2026-01-01 00:00:00')"))
    engine.dispose()
    return db_url


def test_migrate_command(db_url: str, capsys):
    assert main(["--database-url", db_url, "migrate"]) == 0
    out = capsys.readouterr().out
    assert "Applied migrations: 1, 2, 3, 4" in out
    assert "Schema version: 4" in out

    assert main(["--database-url", db_url, "migrate"]) == 0
    assert "Schema already up to date." in capsys.readouterr().out


def test_assign_orphans_command(seeded_url: str, capsys):
    assert main(["--database-url", seeded_url, "assign-orphans", "frank"]) == 0
    assert "Assigned 1 task(s)" in capsys.readouterr().out


def test_assign_orphans_unknown_user(seeded_url: str, capsys):
    assert main(["--database-url", seeded_url, "assign-orphans", "nobody"]) == 1
    assert "User not found" in capsys.readouterr().err


def test_set_email_command(seeded_url: str, capsys):
    assert main(["--database-url", seeded_url, "set-email", "frank", "Frank@Example.com"]) == 0
    assert "frank@example.com" in capsys.readouterr().out

    engine = create_db_engine(seeded_url, echo=False)
    with Session(engine) as db:
        assert db.exec(select(User).where(User.username == "frank")).one().email == "frank@example.com"
    engine.dispose()


def test_set_email_rejects_bad_address(seeded_url: str, capsys):
    assert main(["--database-url", seeded_url, "set-email", "frank", "nope"]) == 1
    assert "Invalid email format" in capsys.readouterr().err


def test_inspect_command(seeded_url: str, capsys):
    assert main(["--database-url", seeded_url, "inspect"]) == 0
    out = capsys.readouterr().out
    assert "users columns: id" in out
    assert "frank" in out
    assert "orphan" in out


def test_sessions_and_purge_commands(seeded_url: str, capsys):
    assert main(["--database-url", seeded_url, "sessions"]) == 0
    assert "frank" in capsys.readouterr().out

    assert main(["--database-url", seeded_url, "purge-sessions"]) == 0
    assert "Purged 0 expired session(s)." in capsys.readouterr().out
