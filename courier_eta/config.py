"""Centralized application configuration for the ETA service and its clients."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, List

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    fallback_path = BASE_DIR / "db" / "orders.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and clients."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Courier ETA Service")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Order record store
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Calculator credentials and directions provider
    SERVICE_ROLE_KEY: Final[str] = os.getenv("SERVICE_ROLE_KEY", "")
    MAPBOX_ACCESS_TOKEN: Final[str] = os.getenv("MAPBOX_ACCESS_TOKEN", "")
    MAPBOX_API_BASE_URL: Final[str] = os.getenv("MAPBOX_API_BASE_URL", "https://api.mapbox.com")
    MAPBOX_PROFILE: Final[str] = os.getenv("MAPBOX_PROFILE", "driving")
    MAPBOX_TIMEOUT_SECONDS: Final[float] = float(os.getenv("MAPBOX_TIMEOUT_SECONDS", "10"))

    # Requester side
    CALCULATOR_FUNCTION_URL: Final[str] = os.getenv(
        "CALCULATOR_FUNCTION_URL", "http://localhost:5000/functions/v1/calculate-eta"
    )
    CALCULATOR_TIMEOUT_SECONDS: Final[float] = float(os.getenv("CALCULATOR_TIMEOUT_SECONDS", "15"))
    ORDER_API_BASE_URL: Final[str] = os.getenv("ORDER_API_BASE_URL", "http://localhost:5000")
    ETA_POLL_INTERVAL_SECONDS: Final[int] = int(os.getenv("ETA_POLL_INTERVAL_SECONDS", "300"))
    ETA_MONOTONIC_GUARD: Final[bool] = _str_to_bool(os.getenv("ETA_MONOTONIC_GUARD"), default=False)

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["ETA_POLL_INTERVAL_SECONDS"] = cls.ETA_POLL_INTERVAL_SECONDS
        app.config["ETA_MONOTONIC_GUARD"] = cls.ETA_MONOTONIC_GUARD
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED


@dataclass(frozen=True)
class CalculatorSettings:
    """The three values the calculator refuses to run without."""

    database_url: str
    service_key: str
    mapbox_token: str

    @classmethod
    def from_config(cls, config: Any = Config) -> "CalculatorSettings":
        return cls(
            database_url=getattr(config, "DATABASE_URL", "") or "",
            service_key=getattr(config, "SERVICE_ROLE_KEY", "") or "",
            mapbox_token=getattr(config, "MAPBOX_ACCESS_TOKEN", "") or "",
        )

    def missing(self) -> List[str]:
        names = []
        if not self.database_url:
            names.append("DATABASE_URL")
        if not self.service_key:
            names.append("SERVICE_ROLE_KEY")
        if not self.mapbox_token:
            names.append("MAPBOX_ACCESS_TOKEN")
        return names
