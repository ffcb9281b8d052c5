"""
FastAPI dependencies: settings, session store, identity and services.

The identity is resolved once per request from the session cookie and then
passed explicitly into the services.
"""

from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from taskboard.auth import AuthService
from taskboard.config import Settings
from taskboard.database import get_session
from taskboard.errors import AuthorizationError
from taskboard.sessions import Identity, SessionStore
from taskboard.tasks import TaskService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_token(request: Request, settings: Settings = Depends(get_app_settings)) -> Optional[str]:
    return request.cookies.get(settings.session_cookie_name)


def get_session_store(
    db: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> SessionStore:
    return SessionStore(db, ttl=timedelta(hours=settings.session_ttl_hours))


def get_identity(
    token: Optional[str] = Depends(get_session_token),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_app_settings),
) -> Optional[Identity]:
    """
    The identity behind the session cookie, or None when anonymous.
    """
    identity = store.validate(token)
    if identity is not None and settings.session_rolling:
        store.touch(token)
    return identity


def require_identity(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
    if identity is None:
        raise AuthorizationError()
    return identity


def get_auth_service(
    db: Session = Depends(get_session),
    store: SessionStore = Depends(get_session_store),
) -> AuthService:
    return AuthService(db, store)


def get_task_service(
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_session),
) -> TaskService:
    return TaskService(db, identity)
