"""
Server-side session storage.

A session is a row in the `sessions` table keyed by an opaque random token
that travels in an HTTP-only cookie. The row holds a JSON payload with the
user id and username, and an expiry instant. Unknown, malformed and expired
tokens all validate to None; callers decide what anonymous means.
"""

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlmodel import Session, col, select

from taskboard.models import SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class Identity:
    """The authenticated user a request acts as."""

    user_id: int
    username: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def decode_payload(raw: str) -> Optional[Identity]:
    try:
        payload = json.loads(raw)
        return Identity(user_id=int(payload["user_id"]), username=str(payload["username"]))
    except (ValueError, KeyError, TypeError):
        return None


class SessionStore:
    def __init__(
        self,
        db: Session,
        ttl: timedelta = DEFAULT_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.ttl = ttl
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return _as_utc(self._clock())

    def create(self, identity: Identity) -> str:
        token = secrets.token_urlsafe(32)
        record = SessionRecord(
            sid=token,
            sess=json.dumps({"user_id": identity.user_id, "username": identity.username}),
            expire=self.now() + self.ttl,
        )
        self.db.add(record)
        self.db.commit()
        logger.debug("Session created for user id %s", identity.user_id)
        return token

    def validate(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        record = self.db.get(SessionRecord, token)
        if record is None:
            return None
        if _as_utc(record.expire) <= self.now():
            logger.info("Discarding expired session")
            self.db.delete(record)
            self.db.commit()
            return None
        identity = decode_payload(record.sess)
        if identity is None:
            logger.warning("Session payload could not be decoded; treating as anonymous")
        return identity

    def touch(self, token: str) -> bool:
        """
        Pushes the expiry of a live session to now + ttl.
        """
        record = self.db.get(SessionRecord, token)
        if record is None:
            return False
        record.expire = self.now() + self.ttl
        self.db.add(record)
        self.db.commit()
        return True

    def destroy(self, token: Optional[str]) -> bool:
        if not token:
            return False
        record = self.db.get(SessionRecord, token)
        if record is None:
            return False
        self.db.delete(record)
        self.db.commit()
        return True

    def purge_expired(self) -> int:
        expired = self.db.exec(
            select(SessionRecord).where(SessionRecord.expire <= self.now())
        ).all()
        for record in expired:
            self.db.delete(record)
        self.db.commit()
        if expired:
            logger.info("Purged %d expired sessions", len(expired))
        return len(expired)

    def recent(self, limit: int = 20) -> List[SessionRecord]:
        return list(
            self.db.exec(
                select(SessionRecord).order_by(col(SessionRecord.expire).desc()).limit(limit)
            ).all()
        )
