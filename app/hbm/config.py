import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    status_history_backend: str
    quote_validity_days: int
    inquiry_new_sla_days: int
    inquiry_in_progress_sla_days: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from None


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///hbm.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        status_history_backend=_getenv("STATUS_HISTORY_BACKEND", "sql").lower(),
        quote_validity_days=_getint("QUOTE_VALIDITY_DAYS", 30),
        inquiry_new_sla_days=_getint("INQUIRY_NEW_SLA_DAYS", 7),
        inquiry_in_progress_sla_days=_getint("INQUIRY_IN_PROGRESS_SLA_DAYS", 30),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STATUS_HISTORY_BACKEND": s.status_history_backend,
        "QUOTE_VALIDITY_DAYS": s.quote_validity_days,
        "INQUIRY_NEW_SLA_DAYS": s.inquiry_new_sla_days,
        "INQUIRY_IN_PROGRESS_SLA_DAYS": s.inquiry_in_progress_sla_days,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
    }


def check_production_settings(s: Settings) -> None:
    """Fail fast on settings that must never reach production. Used by the app factory and the release step."""
    if s.env.lower() not in ("prod", "production"):
        return
    if s.database_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if s.secret_key in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
