from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from servicekit.observability.logging import parse_level


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = Field(default="servicekit", alias="APP_NAME")
    app_version: str = Field(default="", alias="APP_VERSION")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    sentry_dsn: str = Field(default="", alias="SENTRY_DSN")
    # Header name -> log field name, e.g. {"X-Request-Id": "requestId"}.
    logged_headers: dict[str, str] = Field(default_factory=dict, alias="LOGGED_HEADERS")

    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    cache_prefix: str = Field(default="", alias="CACHE_PREFIX")
    cache_timeout_s: float = Field(default=2.0, gt=0, alias="CACHE_TIMEOUT_S")

    metrics_url: str = Field(default="", alias="METRICS_URL")
    metrics_flush_interval_s: float = Field(default=15.0, gt=0, alias="METRICS_FLUSH_INTERVAL_S")
    metrics_push_timeout_s: float = Field(default=5.0, gt=0, alias="METRICS_PUSH_TIMEOUT_S")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        parse_level(value)
        return value

    @property
    def metrics_enabled(self) -> bool:
        return bool(self.metrics_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
