from __future__ import annotations

import argparse
import os
import sys
from datetime import timedelta
from typing import Optional

from sqlalchemy import inspect
from sqlmodel import Session, col, select

from taskboard.auth import AuthService
from taskboard.config import get_settings
from taskboard.database import create_db_engine
from taskboard.errors import TaskboardError
from taskboard.logging_setup import setup_logging
from taskboard.migrations import assign_orphan_tasks, current_version, migrate
from taskboard.models import Task, User
from taskboard.sessions import Identity, SessionStore, decode_payload


def _engine_from_args(ns: argparse.Namespace):
    return create_db_engine(getattr(ns, "database_url", None))


def _session_store(db: Session) -> SessionStore:
    return SessionStore(db, ttl=timedelta(hours=get_settings().session_ttl_hours))


def cmd_migrate(ns: argparse.Namespace) -> int:
    engine = _engine_from_args(ns)
    applied = migrate(engine)
    with engine.connect() as conn:
        version = current_version(conn)
    if applied:
        print(f"Applied migrations: {', '.join(str(v) for v in applied)}")
    else:
        print("Schema already up to date.")
    print(f"Schema version: {version}")
    return 0


def cmd_assign_orphans(ns: argparse.Namespace) -> int:
    engine = _engine_from_args(ns)
    migrate(engine)
    count = assign_orphan_tasks(engine, ns.username)
    print(f"Assigned {count} task(s) without an owner to {ns.username}.")
    return 0


def cmd_set_email(ns: argparse.Namespace) -> int:
    engine = _engine_from_args(ns)
    migrate(engine)
    with Session(engine) as db:
        user = db.exec(select(User).where(User.username == ns.username)).first()
        if user is None:
            print(f'User not found with username="{ns.username}".', file=sys.stderr)
            return 1
        auth = AuthService(db, _session_store(db))
        email = auth.change_email(Identity(user_id=user.id, username=user.username), ns.email)
    print(f"Email for {ns.username} set to {email}.")
    return 0


def cmd_inspect(ns: argparse.Namespace) -> int:
    engine = _engine_from_args(ns)
    inspector = inspect(engine)
    for table in ("users", "tasks", "sessions"):
        if not inspector.has_table(table):
            print(f"--- {table}: missing ---")
            continue
        columns = ", ".join(c["name"] for c in inspector.get_columns(table))
        print(f"--- {table} columns: {columns}")

    if not inspector.has_table("users") or not inspector.has_table("tasks"):
        return 0

    with Session(engine) as db:
        print("\n--- users (id, username, email, created_at) ---")
        for user in db.exec(select(User).order_by(col(User.id))).all():
            print(f"{user.id:>4}  {user.username:<20} {user.email or '':<30} {user.created_at}")

        print(f"\n--- tasks (id, user_id, title, created_at) LIMIT {ns.limit} ---")
        tasks = db.exec(
            select(Task).order_by(col(Task.created_at).desc()).limit(ns.limit)
        ).all()
        for task in tasks:
            owner = task.user_id if task.user_id is not None else "-"
            print(f"{task.id:>4}  {owner!s:>6}  {task.title:<40} {task.created_at}")
    return 0


def cmd_sessions(ns: argparse.Namespace) -> int:
    engine = _engine_from_args(ns)
    with Session(engine) as db:
        records = _session_store(db).recent(ns.limit)
    if not records:
        print("No sessions found.")
        return 0
    print(f"{'EXPIRE':<27}  {'USER':>6}  {'USERNAME':<20}  SID")
    print("-" * 80)
    for record in records:
        identity = decode_payload(record.sess)
        if identity is None:
            print(f"{record.expire!s:<27}  {'?':>6}  {'<<unparseable sess>>':<20}  {record.sid[:12]}...")
        else:
            print(f"{record.expire!s:<27}  {identity.user_id:>6}  {identity.username:<20}  {record.sid[:12]}...")
    return 0


def cmd_purge_sessions(ns: argparse.Namespace) -> int:
    engine = _engine_from_args(ns)
    with Session(engine) as db:
        count = _session_store(db).purge_expired()
    print(f"Purged {count} expired session(s).")
    return 0


def cmd_serve(ns: argparse.Namespace) -> int:
    import uvicorn

    if ns.database_url:
        # the app module reads DATABASE_URL on import
        os.environ["DATABASE_URL"] = ns.database_url
        get_settings.cache_clear()
    uvicorn.run("taskboard.main:app", host=ns.host, port=ns.port, reload=ns.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="taskboard", description="Taskboard administration")
    p.add_argument("--database-url", help="Database URL (default: DATABASE_URL or sqlite:///./data.db)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("migrate", help="Apply pending schema migrations")
    sp.set_defaults(func=cmd_migrate)

    sp = sub.add_parser("assign-orphans", help="Give tasks without an owner to a user")
    sp.add_argument("username")
    sp.set_defaults(func=cmd_assign_orphans)

    sp = sub.add_parser("set-email", help="Set a user's email address")
    sp.add_argument("username")
    sp.add_argument("email")
    sp.set_defaults(func=cmd_set_email)

    sp = sub.add_parser("inspect", help="Print table columns and recent users/tasks")
    sp.add_argument("--limit", type=int, default=50)
    sp.set_defaults(func=cmd_inspect)

    sp = sub.add_parser("sessions", help="List the most recent sessions")
    sp.add_argument("--limit", type=int, default=20)
    sp.set_defaults(func=cmd_sessions)

    sp = sub.add_parser("purge-sessions", help="Delete expired sessions")
    sp.set_defaults(func=cmd_purge_sessions)

    sp = sub.add_parser("serve", help="Run the API server")
    sp.add_argument("--host", default="127.0.0.1")
    sp.add_argument("--port", type=int, default=8000)
    sp.add_argument("--reload", action="store_true")
    sp.set_defaults(func=cmd_serve)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    setup_logging(get_settings().log_level)
    try:
        return int(ns.func(ns))
    except TaskboardError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
