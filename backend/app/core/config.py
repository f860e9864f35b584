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

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
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
    log_level: str = Field(default="INFO", description="Minimum loguru level")
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/alerts.db",
        description="SQLAlchemy compatible database URL",
    )
    supabase_db_url: AnyUrl | str | None = Field(
        default=None,
        description="Supabase pooled Postgres connection string for production runs",
    )
    database_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for acquiring a connection and running a statement",
        gt=0,
    )
    polymarket_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for Polymarket API",
    )
    polymarket_events_path: str = Field(
        default="/events",
        description="Relative path for events endpoint",
    )
    ingestion_page_size: int = Field(
        100, description="Number of events requested from the feed per run", ge=1
    )
    ingestion_filters: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional query parameters applied when fetching Polymarket events",
    )
    upstream_timeout_seconds: float = Field(
        default=10.0, description="Timeout for the upstream feed request", gt=0
    )
    alert_dedup_window_minutes: int = Field(
        default=60,
        description="Trailing window in which an existing (market, alert type) suppresses a new alert",
        ge=15,
        le=1440,
    )
    alert_imbalance_threshold: float = Field(
        default=0.01,
        description="Minimum |1 - (yes + no)| that counts as a price imbalance",
        ge=0,
    )
    alert_whale_volume_threshold: float = Field(
        default=100_000,
        description="Market volume above which a whale alert is emitted",
        ge=0,
    )
    service_role_key: str | None = Field(
        default=None,
        description="Service credential accepted from schedulers and internal callers",
    )
    internal_jwt_secret: str | None = Field(
        default=None,
        description="HS256 secret used to verify signed internal tokens",
    )
    internal_jwt_issuer: str | None = Field(
        default=None,
        description="Expected iss claim of signed internal tokens",
    )
    internal_trusted_roles: list[str] | str = Field(
        default_factory=lambda: ["service_role"],
        description="Comma-separated role claims treated as trusted internal callers",
    )
    auth_base_url: AnyUrl | str | None = Field(
        default=None,
        description="Base URL of the auth provider used to validate end-user tokens",
    )
    auth_api_key: str | None = Field(
        default=None,
        description="API key sent alongside user tokens to the auth provider",
    )
    auth_timeout_seconds: float = Field(default=5.0, gt=0)
    pesapal_base_url: AnyUrl | str = Field(
        default="https://pay.pesapal.com/v3",
        description="Base URL for the PesaPal v3 API",
    )
    pesapal_consumer_key: str | None = Field(default=None)
    pesapal_consumer_secret: str | None = Field(default=None)
    pesapal_timeout_seconds: float = Field(default=15.0, gt=0)

    @field_validator("database_url", "supabase_db_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value

        if value.startswith("postgresql+psycopg://") or value.startswith(
            "postgresql+asyncpg://"
        ):
            return value

        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("internal_trusted_roles", mode="after")
    @classmethod
    def _parse_trusted_roles(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [item for item in (part.strip() for part in value.split(",")) if item]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError(
            "INTERNAL_TRUSTED_ROLES must be provided as a list or comma-separated string"
        )

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported LOG_LEVEL {value!r}")
        return normalized

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.supabase_db_url:
                raise ValueError(
                    "SUPABASE_DB_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.supabase_db_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
