import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "framework_packages"


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    framework_catalog_path: str
    framework_retire_missing: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getflag(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///grc.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        framework_catalog_path=_getenv("FRAMEWORK_CATALOG_PATH", str(DEFAULT_CATALOG_PATH)),
        framework_retire_missing=_getflag("FRAMEWORK_RETIRE_MISSING"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "FRAMEWORK_CATALOG_PATH": s.framework_catalog_path,
        "FRAMEWORK_RETIRE_MISSING": s.framework_retire_missing,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # package uploads are JSON documents; large standards stay well under 10MB
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
