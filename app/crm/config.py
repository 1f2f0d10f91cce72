import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    log_level: str

    # CRM REST backend
    api_base_url: str
    api_timeout_seconds: float

    session_hours: float

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number (got {raw!r}).") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive (got {raw!r}).")
    return value


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        api_base_url=_getenv("CRM_API_BASE_URL", "http://localhost:8080/api").rstrip("/"),
        api_timeout_seconds=_getfloat("CRM_API_TIMEOUT", 30.0),
        session_hours=_getfloat("CRM_SESSION_HOURS", 8.0),
    )


def load_config() -> dict:
    """Flask config mapping built from the environment."""
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "LOG_LEVEL": s.log_level,
        "CRM_API_BASE_URL": s.api_base_url,
        "CRM_API_TIMEOUT": s.api_timeout_seconds,
        # Signed cookie holding the credential; keep it off scripts and plain HTTP.
        "PERMANENT_SESSION_LIFETIME": timedelta(hours=s.session_hours),
        "SESSION_REFRESH_EACH_REQUEST": True,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
    }
