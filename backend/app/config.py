from __future__ import annotations

from dataclasses import dataclass
import os


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    log_level: str
    cors_origins: list[str]
    create_schema: bool
    max_warning_alerts: int | None
    index_sync_source: str


def load_settings() -> Settings:
    app_env = os.getenv("APP_ENV", "development")
    return Settings(
        app_env=app_env,
        database_url=os.getenv("DATABASE_URL", "sqlite:///./reconciliation.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_parse_csv(
            os.getenv(
                "CORS_ORIGINS",
                "http://localhost:5173,http://localhost:5174",
            )
        ),
        create_schema=_parse_bool(os.getenv("CREATE_SCHEMA"), app_env != "production"),
        max_warning_alerts=_parse_optional_int(os.getenv("MAX_WARNING_ALERTS")),
        index_sync_source=os.getenv("INDEX_SYNC_SOURCE", "hashavshevet_export"),
    )


settings = load_settings()
