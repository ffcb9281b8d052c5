import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from taskboard import __version__
from taskboard.auth import AuthService
from taskboard.config import Settings, get_settings
from taskboard.database import create_db_engine
from taskboard.dependencies import (
    get_app_settings,
    get_auth_service,
    get_identity,
    get_session_token,
    get_task_service,
    require_identity,
)
from taskboard.errors import NotFoundError, TaskboardError
from taskboard.logging_setup import setup_logging
from taskboard.migrations import migrate
from taskboard.schemas import (
    Ack,
    ChangeEmailRequest,
    ChangeEmailResult,
    Credentials,
    DeleteAccountRequest,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    UserMe,
    UserOut,
)
from taskboard.security import configure_hashing
from taskboard.sessions import Identity, SessionStore
from taskboard.tasks import TaskFilters, TaskService

logger = logging.getLogger(__name__)


def _set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_max_age,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )


def _clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(key=settings.session_cookie_name, path="/")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Creates and configures the FastAPI application.

    The engine is opened here and disposed at shutdown, unless the caller
    passed one in, in which case the caller owns it.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings.log_level)
    configure_hashing(settings.bcrypt_rounds)
    owns_engine = engine is None
    engine = engine or create_db_engine(settings.database_url, settings.database_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        migrate(engine)
        with Session(engine) as db:
            SessionStore(db, ttl=timedelta(hours=settings.session_ttl_hours)).purge_expired()
        yield
        if owns_engine:
            engine.dispose()
            logger.info("Database engine disposed")

    app = FastAPI(
        title="Taskboard",
        description="Session-authenticated task tracker API.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine

    # --- Middleware Configuration ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error Mapping ---
    @app.exception_handler(TaskboardError)
    async def taskboard_error_handler(request: Request, exc: TaskboardError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # A malformed id in the path cannot name an existing task
        if any(err.get("loc", ("",))[0] == "path" for err in exc.errors()):
            return _error(status.HTTP_404_NOT_FOUND, NotFoundError.default_message)
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid request body")

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error")

    # --- API Endpoints ---
    @app.get("/")
    def read_root():
        return {"message": "Welcome to the Taskboard backend!"}

    # --- Authentication Endpoints ---
    @app.post("/auth/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
    def register_user(
        body: Credentials,
        response: Response,
        auth: AuthService = Depends(get_auth_service),
        settings: Settings = Depends(get_app_settings),
    ):
        user, token = auth.register(body.username, body.password)
        _set_session_cookie(response, token, settings)
        return user

    @app.post("/auth/login", response_model=UserOut)
    def login_user(
        body: Credentials,
        response: Response,
        token: Optional[str] = Depends(get_session_token),
        auth: AuthService = Depends(get_auth_service),
        settings: Settings = Depends(get_app_settings),
    ):
        user, new_token = auth.login(body.username, body.password, previous_token=token)
        _set_session_cookie(response, new_token, settings)
        return user

    @app.post("/auth/logout", response_model=Ack)
    def logout_user(
        response: Response,
        token: Optional[str] = Depends(get_session_token),
        auth: AuthService = Depends(get_auth_service),
        settings: Settings = Depends(get_app_settings),
    ):
        auth.logout(token)
        _clear_session_cookie(response, settings)
        return {"success": True}

    @app.get("/auth/me", response_model=Optional[UserMe])
    def read_current_user(
        identity: Optional[Identity] = Depends(get_identity),
        auth: AuthService = Depends(get_auth_service),
    ):
        return auth.current_user(identity)

    @app.post("/auth/change-email", response_model=ChangeEmailResult)
    def change_email(
        body: ChangeEmailRequest,
        identity: Identity = Depends(require_identity),
        auth: AuthService = Depends(get_auth_service),
    ):
        email = auth.change_email(identity, body.new_email)
        return {"success": True, "email": email}

    @app.post("/auth/delete-account", response_model=Ack)
    def delete_account(
        body: DeleteAccountRequest,
        response: Response,
        identity: Identity = Depends(require_identity),
        token: Optional[str] = Depends(get_session_token),
        auth: AuthService = Depends(get_auth_service),
        settings: Settings = Depends(get_app_settings),
    ):
        auth.delete_account(identity, body.password, token)
        _clear_session_cookie(response, settings)
        return {"success": True}

    # --- Task Endpoints ---
    @app.get("/api/tasks", response_model=List[TaskRead])
    def list_tasks(
        completed: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        tasks: TaskService = Depends(get_task_service),
    ):
        return tasks.list(TaskFilters.from_query(completed, priority, search))

    @app.post("/api/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
    def create_task(task_in: TaskCreate, tasks: TaskService = Depends(get_task_service)):
        return tasks.create(
            title=task_in.title,
            description=task_in.description,
            due_date=task_in.due_date,
            priority=task_in.priority,
        )

    @app.get("/api/tasks/{task_id}", response_model=TaskRead)
    def get_task(task_id: int, tasks: TaskService = Depends(get_task_service)):
        return tasks.get(task_id)

    @app.put("/api/tasks/{task_id}", response_model=TaskRead)
    def update_task(task_id: int, task_in: TaskUpdate, tasks: TaskService = Depends(get_task_service)):
        return tasks.update(
            task_id,
            title=task_in.title,
            description=task_in.description,
            due_date=task_in.due_date,
            priority=task_in.priority,
            completed=task_in.completed,
        )

    @app.patch("/api/tasks/{task_id}/toggle", response_model=TaskRead)
    def toggle_task_completion(task_id: int, tasks: TaskService = Depends(get_task_service)):
        return tasks.toggle_completed(task_id)

    @app.delete("/api/tasks/{task_id}", response_model=Ack)
    def delete_task(task_id: int, tasks: TaskService = Depends(get_task_service)):
        tasks.delete(task_id)
        return {"success": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
