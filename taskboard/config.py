import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

from taskboard.errors import ConfigurationError

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./data.db"
    database_echo: bool = False
    session_ttl_hours: int = 24
    session_cookie_name: str = "taskboard.sid"
    session_cookie_secure: bool = False
    session_rolling: bool = False
    bcrypt_rounds: int = 12
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Builds settings from environment variables (and a `.env` file, if present).
        """
        ttl_hours = _env_int("SESSION_TTL_HOURS", 24)
        if ttl_hours <= 0:
            raise ConfigurationError("SESSION_TTL_HOURS must be positive.")
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./data.db"),
            database_echo=_env_bool("DATABASE_ECHO", False),
            session_ttl_hours=ttl_hours,
            session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "taskboard.sid"),
            session_cookie_secure=_env_bool("SESSION_COOKIE_SECURE", False),
            session_rolling=_env_bool("SESSION_ROLLING", False),
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12),
            cors_origins=_env_list("CORS_ORIGINS", ["*"]),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def session_max_age(self) -> int:
        return self.session_ttl_hours * 60 * 60


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
