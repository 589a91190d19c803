from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # An empty REDIS_URL runs cache and rate limiter in "not configured" mode.
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    supabase_url: str | None = Field(None, alias="SUPABASE_URL")
    supabase_service_role: str | None = Field(None, alias="SUPABASE_SERVICE_ROLE")

    gamma_api_base: str = Field("https://gamma-api.polymarket.com", alias="GAMMA_API_BASE")
    upstream_timeout_s: float = Field(15.0, alias="UPSTREAM_TIMEOUT_S")
    upstream_page_limit: int = Field(100, alias="UPSTREAM_PAGE_LIMIT", ge=1, le=500)

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o", alias="OPENAI_MODEL")
    openai_rpm: int = Field(60, alias="OPENAI_RPM", ge=1)
    llm_max_attempts: int = Field(3, alias="LLM_MAX_ATTEMPTS", ge=1)
    llm_base_delay_s: float = Field(1.0, alias="LLM_BASE_DELAY_S", gt=0)
    llm_max_delay_s: float = Field(30.0, alias="LLM_MAX_DELAY_S", gt=0)

    games_cache_ttl_s: int = Field(300, alias="GAMES_CACHE_TTL_S")
    analysis_cache_ttl_s: int = Field(300, alias="ANALYSIS_CACHE_TTL_S")
    cache_probe_interval_s: float = Field(30.0, alias="CACHE_PROBE_INTERVAL_S")
    rate_limit_probe_interval_s: float = Field(5.0, alias="RATE_LIMIT_PROBE_INTERVAL_S")

    snapshot_refresh_sec: int = Field(300, alias="SNAPSHOT_REFRESH_SEC")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()  # import this across modules
