from typing import List, Optional
from datetime import datetime, timezone
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """
    A registered account. `password_hash` never leaves the service layer.
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True, nullable=False)
    password_hash: str = Field(nullable=False)
    # Uniqueness is checked case-insensitively by the auth service
    email: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)

    tasks: List["Task"] = Relationship(back_populates="user", cascade_delete=True)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    # NULL only for rows that predate the owner column
    user_id: Optional[int] = Field(default=None, index=True, foreign_key="users.id", ondelete="CASCADE")
    title: str = Field(nullable=False)
    description: Optional[str] = Field(default=None)
    due_date: Optional[str] = Field(default=None)
    priority: int = Field(default=2, nullable=False)
    completed: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)

    user: Optional[User] = Relationship(back_populates="tasks")


class SessionRecord(SQLModel, table=True):
    """
    Server-side session row. `sess` holds the JSON payload, `expire` the UTC expiry.
    """
    __tablename__ = "sessions"

    sid: str = Field(primary_key=True)
    sess: str = Field(nullable=False)
    expire: datetime = Field(index=True, nullable=False)


class SchemaVersion(SQLModel, table=True):
    __tablename__ = "schema_version"

    version: int = Field(primary_key=True)
    name: str = Field(nullable=False)
    applied_at: datetime = Field(default_factory=utcnow, nullable=False)
