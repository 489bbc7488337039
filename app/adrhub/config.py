import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    notifications_enabled: bool
    global_admin_bypass: bool
    notification_page_limit: int
    audit_page_limit: int

    db_pool_size: int
    db_max_overflow: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///adrhub.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        notifications_enabled=_getenv_bool("NOTIFICATIONS_ENABLED", True),
        global_admin_bypass=_getenv_bool("GLOBAL_ADMIN_BYPASS", True),
        notification_page_limit=_getenv_int("NOTIFICATION_PAGE_LIMIT", 50),
        audit_page_limit=_getenv_int("AUDIT_PAGE_LIMIT", 50),
        db_pool_size=_getenv_int("DB_POOL_SIZE", 5),
        db_max_overflow=_getenv_int("DB_MAX_OVERFLOW", 10),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "NOTIFICATIONS_ENABLED": s.notifications_enabled,
        "GLOBAL_ADMIN_BYPASS": s.global_admin_bypass,
        "NOTIFICATION_PAGE_LIMIT": s.notification_page_limit,
        "AUDIT_PAGE_LIMIT": s.audit_page_limit,
        "DB_POOL_SIZE": s.db_pool_size,
        "DB_MAX_OVERFLOW": s.db_max_overflow,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # JSON bodies only; no uploads
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
