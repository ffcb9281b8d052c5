import logging
import re
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from taskboard.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ValidationError,
)
from taskboard.models import User
from taskboard.security import hash_password, verify_password
from taskboard.sessions import Identity, SessionStore

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def public_user(user: User) -> dict:
    """
    The fields of a user that are safe to hand to a client.
    """
    return {"id": user.id, "username": user.username, "email": user.email or None}


def normalize_email(raw: Optional[str]) -> str:
    if raw is None or str(raw).strip() == "":
        raise ValidationError("Email required")
    email = str(raw).strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")
    return email


class AuthService:
    """
    Account and session lifecycle. Each call that logs a user in returns the
    public user projection together with the new session token.
    """

    def __init__(self, db: Session, sessions: SessionStore):
        self.db = db
        self.sessions = sessions

    def _get_by_username(self, username: str) -> Optional[User]:
        return self.db.exec(select(User).where(User.username == username)).first()

    def _get_by_email(self, email: str) -> Optional[User]:
        return self.db.exec(select(User).where(func.lower(User.email) == email)).first()

    def _start_session(self, user: User) -> str:
        return self.sessions.create(Identity(user_id=user.id, username=user.username))

    def register(self, username: Optional[str], password: Optional[str]) -> Tuple[dict, str]:
        if not username or not password:
            raise ValidationError("username and password required")
        if len(username.strip()) < MIN_USERNAME_LENGTH:
            raise ValidationError(f"username must be at least {MIN_USERNAME_LENGTH} chars")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} chars")

        logger.info("Attempting to register new user: %s", username)
        if self._get_by_username(username):
            logger.info("User already exists: %s", username)
            raise ConflictError("Username already taken")

        db_user = User(username=username, password_hash=hash_password(password))
        self.db.add(db_user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same name
            self.db.rollback()
            raise ConflictError("Username already taken") from exc
        self.db.refresh(db_user)
        logger.info("User registered successfully: %s with id %s", db_user.username, db_user.id)

        return public_user(db_user), self._start_session(db_user)

    def login(
        self,
        username: Optional[str],
        password: Optional[str],
        previous_token: Optional[str] = None,
    ) -> Tuple[dict, str]:
        if not username or not password:
            raise ValidationError("username and password required")

        user = self._get_by_username(username)
        # Same answer for unknown user and wrong password
        if not user or not verify_password(password, user.password_hash):
            logger.info("Failed login for: %s", username)
            raise AuthenticationError("Invalid credentials")

        if previous_token:
            self.sessions.destroy(previous_token)
        logger.info("User logged in successfully: %s", username)
        return public_user(user), self._start_session(user)

    def logout(self, token: Optional[str]) -> None:
        self.sessions.destroy(token)

    def current_user(self, identity: Optional[Identity]) -> Optional[dict]:
        if identity is None:
            return None
        user = self.db.get(User, identity.user_id)
        if user is None:
            return None
        return {**public_user(user), "created_at": user.created_at}

    def change_email(self, identity: Optional[Identity], new_email: Optional[str]) -> str:
        if identity is None:
            raise AuthorizationError()
        email = normalize_email(new_email)

        existing = self._get_by_email(email)
        if existing and existing.id != identity.user_id:
            raise ConflictError("Email already in use")

        user = self.db.get(User, identity.user_id)
        if user is None:
            raise AuthorizationError()
        user.email = email
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Another account took the address between the check and the write
            self.db.rollback()
            raise ConflictError("Email already in use") from exc
        logger.info("Email changed for user id %s", identity.user_id)
        return email

    def delete_account(
        self,
        identity: Optional[Identity],
        password: Optional[str],
        token: Optional[str] = None,
    ) -> None:
        """
        Deletes the user (tasks cascade) after re-checking the password, then
        drops the session. A failure to drop the session is only logged.
        """
        if identity is None:
            raise AuthorizationError()
        if not password:
            raise ValidationError("Password required")

        user = self.db.get(User, identity.user_id)
        if user is None:
            raise AuthenticationError("User not found")
        if not verify_password(password, user.password_hash):
            raise AuthenticationError("Incorrect password")

        self.db.delete(user)
        self.db.commit()
        logger.info("Deleted account %s (id %s)", identity.username, identity.user_id)

        try:
            self.sessions.destroy(token)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Session destroy error after account deletion")
