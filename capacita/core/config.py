import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv
from fastapi import Request

DEFAULT_JWT_SECRET = "capacita_arapiraca_secret_2025"
STORAGE_BACKENDS = {"file", "database"}


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    storage_backend: str = "file"
    data_dir: str = "data"
    database_url: str = "sqlite:///./capacita.db"
    jwt_secret_key: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = 7
    auth_cookie_name: str = "authToken"
    cookie_secure: bool = False
    bcrypt_rounds: int = 12
    cors_origins: tuple[str, ...] = field(default=("http://localhost:3000",))
    log_level: str = "INFO"


def load_settings() -> Settings:
    load_dotenv()

    app_env = os.getenv("APP_ENV", "development")
    return Settings(
        app_env=app_env,
        storage_backend=os.getenv("STORAGE_BACKEND", "file").strip().lower(),
        data_dir=os.getenv("DATA_DIR", "data"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./capacita.db"),
        jwt_secret_key=os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_expires_days=int(os.getenv("JWT_EXPIRES_DAYS", "7")),
        auth_cookie_name=os.getenv("AUTH_COOKIE_NAME", "authToken"),
        cookie_secure=_get_bool(os.getenv("COOKIE_SECURE"), default=app_env.lower() == "production"),
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
        cors_origins=_get_list(os.getenv("CORS_ORIGINS"), ("http://localhost:3000",)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def validate_runtime_config(settings: Settings) -> None:
    if settings.app_env.lower() == "production" and settings.jwt_secret_key == DEFAULT_JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set in production.")
    if settings.storage_backend not in STORAGE_BACKENDS:
        raise RuntimeError(f"Unknown STORAGE_BACKEND {settings.storage_backend!r}.")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
