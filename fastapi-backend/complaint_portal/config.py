"""
Centralized settings for the Complaint Portal backend.

Provides a lightweight wrapper around environment variables (with `.env`
support for local development) so the rest of the codebase can import a single
`get_settings()` helper when configuration is needed. This avoids ad-hoc calls
to `os.environ` spread across modules and keeps defaults consistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os

from dotenv import dotenv_values


@dataclass(frozen=True)
class Settings:
    """Immutable view of application configuration."""

    # General
    environment: str
    database_url: str
    allowed_origins: tuple[str, ...]
    frontend_url: str

    # Credentials
    jwt_secret: str
    jwt_algorithm: str
    access_token_hours: int
    refresh_token_days: int
    single_use_token_hours: int

    # Escalation scheduler
    escalation_interval_seconds: int
    escalation_run_on_start: bool
    escalation_initial_delay_seconds: int

    # Email
    smtp_host: str
    smtp_port: int
    smtp_user: Optional[str]
    smtp_password: Optional[str]
    smtp_use_tls: bool
    smtp_timeout_seconds: float
    email_from: str
    admin_notify_email: Optional[str]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_lookup(key: str, env: dict[str, str], default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key) or env.get(key) or default


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""

    env_path = Path(__file__).resolve().parents[2] / ".env"
    env_file = dotenv_values(str(env_path)) if env_path.exists() else {}

    jwt_secret = _env_lookup("JWT_SECRET", env_file)
    if not jwt_secret:
        # Fail securely rather than signing tokens with a well-known default.
        raise ValueError("JWT_SECRET not found in environment or .env file.")

    origins = _env_lookup("ALLOWED_ORIGINS", env_file, "*")

    return Settings(
        environment=_env_lookup("APP_ENV", env_file, "development"),
        database_url=_env_lookup("DATABASE_URL", env_file, "sqlite+aiosqlite:///./portal.db"),
        allowed_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        frontend_url=_env_lookup("FRONTEND_URL", env_file, "http://localhost:5173"),
        jwt_secret=jwt_secret,
        jwt_algorithm=_env_lookup("JWT_ALGORITHM", env_file, "HS256"),
        access_token_hours=int(_env_lookup("JWT_ACCESS_HOURS", env_file, "24")),
        refresh_token_days=int(_env_lookup("JWT_REFRESH_DAYS", env_file, "7")),
        single_use_token_hours=int(_env_lookup("JWT_SINGLE_USE_HOURS", env_file, "24")),
        escalation_interval_seconds=int(_env_lookup("ESCALATION_INTERVAL_SECONDS", env_file, "3600")),
        escalation_run_on_start=_as_bool(_env_lookup("ESCALATION_RUN_ON_START", env_file), True),
        escalation_initial_delay_seconds=int(_env_lookup("ESCALATION_INITIAL_DELAY_SECONDS", env_file, "30")),
        smtp_host=_env_lookup("SMTP_HOST", env_file, "smtp.gmail.com"),
        smtp_port=int(_env_lookup("SMTP_PORT", env_file, "587")),
        smtp_user=_env_lookup("SMTP_USER", env_file),
        smtp_password=_env_lookup("SMTP_PASSWORD", env_file),
        smtp_use_tls=_as_bool(_env_lookup("SMTP_USE_TLS", env_file), False),
        smtp_timeout_seconds=float(_env_lookup("SMTP_TIMEOUT_SECONDS", env_file, "30")),
        email_from=_env_lookup("EMAIL_FROM", env_file, "noreply@complaint-portal.local"),
        admin_notify_email=_env_lookup("ADMIN_NOTIFY_EMAIL", env_file),
    )


__all__ = ["Settings", "get_settings"]
