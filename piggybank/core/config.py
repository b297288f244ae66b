from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PIGGYBANK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str
    jwt_secret: str
    app_env: str = "development"
    log_level: str = "INFO"
    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "PIGGYBANK_REDIS_URL"),
    )
    cors_allowed_origins: str = "http://localhost:3000"
    default_savings_name: str = "Piggy Bank"
    default_currency: str = "KRW"
    ledger_max_retries: int = 3
    ledger_retry_backoff_ms: int = 25
    git_sha: str | None = None
    build_id: str | None = None


settings = Settings()
