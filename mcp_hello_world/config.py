from functools import lru_cache

from pydantic import Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="mcp-hello-world", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: str = Field(default="production", alias="NODE_ENV")

    region: str = Field(default="unknown", alias="REGION")
    build_sha: str = Field(default="dev", alias="BUILD_SHA")
    instance_id: str = Field(default="local", alias="INSTANCE_ID")
    k_service: str | None = Field(default=None, alias="K_SERVICE")

    request_id_header: str = Field(default="x-request-id", alias="REQUEST_ID_HEADER")
    handshake_close_delay_ms: int = Field(default=100, ge=1, le=5000, alias="HANDSHAKE_CLOSE_DELAY_MS")
    max_body_bytes: int = Field(default=1024 * 1024, gt=0, alias="MAX_BODY_BYTES")

    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_requests: PositiveInt = Field(default=100, alias="RATE_LIMIT_REQUESTS")
    rate_limit_window_seconds: PositiveFloat = Field(default=60.0, alias="RATE_LIMIT_WINDOW_SECONDS")

    @property
    def diagnostics_enabled(self) -> bool:
        return self.environment.strip().lower() == "development"

    @property
    def handshake_close_delay(self) -> float:
        return self.handshake_close_delay_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
