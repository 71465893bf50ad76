from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    coding_plans_env: Literal["local", "test", "prod"] = "local"
    coding_plans_log_level: str = "INFO"
    coding_plans_request_id_header: str = "X-Request-ID"

    # JSON document with vendors, per-provider region/models, allowlist and overrides.
    # Kept in memory only when unset.
    coding_plans_config_path: str | None = None

    # Secret channel for API keys
    coding_plans_secret_backend: Literal["memory", "redis"] = "memory"
    redis_url: str | None = None

    # Vendor HTTP
    vendor_timeout_seconds: float = 120.0
    vendor_connect_timeout_seconds: float = 10.0
    vendor_max_retries: int = 2
    vendor_retry_backoff_seconds: float = 0.8

    # Chat request defaults
    chat_temperature: float = 0.7
    chat_top_p: float = 0.9
    chat_max_tokens: int = 4000

    # Commit message generation
    commit_message_language: Literal["en", "zh-cn"] = "en"
    commit_message_model_vendor: str | None = None
    commit_message_model_id: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
