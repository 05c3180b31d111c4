from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme in {"postgres", "postgresql"}:
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/contests.db",
        description="SQLAlchemy compatible database URL",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum loguru level emitted by the configured sink",
    )
    log_json: bool = Field(
        default=False,
        description="Serialize log records as JSON lines instead of plain text",
    )
    leaderboard_cache_ttl_seconds: float = Field(
        default=30.0,
        description="Seconds a computed leaderboard is served from cache before recomputation",
        ge=0,
    )
    leaderboard_cache_maxsize: int = Field(
        default=512,
        description="Maximum number of contest leaderboards retained in the cache",
        ge=1,
    )
    lifecycle_sweep_batch_size: int = Field(
        default=50,
        description="Number of contests advanced per batch by the lifecycle sweep",
        ge=1,
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        if value in (None, ""):
            return "INFO"
        level = str(value).strip().upper()
        valid_levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        if level not in valid_levels:
            raise ValueError(
                "LOG_LEVEL must be one of " + ", ".join(sorted(valid_levels))
            )
        return level

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
