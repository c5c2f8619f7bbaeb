from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Phase 1: liveness
    liveness_concurrency: int = 6
    liveness_timeout_ms: int = 8000
    liveness_ttl_days: float = 1

    # Phase 2: Wayback Machine availability lookups
    archive_endpoint: str = "https://archive.org/wayback/available"
    archive_throttle_delay_ms: int = 350
    archive_timeout_ms: int = 10000
    archive_ttl_days: float = 7
    archive_failure_ttl_minutes: float = 60
    archive_max_retries: int = 2
    archive_use_jsonp: bool = False

    max_urls_per_run: int = 30

    # Cache store
    cache_backend: Literal["mongo", "memory"] = "mongo"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "link_preserver"
    mongo_max_pool_size: int = 10
    mongo_server_selection_timeout_ms: int = 5000
    memory_cache_max_entries: int = 10_000

    # Shared HTTP client
    http_verify_ssl: bool = True  # set False behind corporate SSL-inspection proxies
    user_agent: str = "LinkPreserver/1.0"

    # Logging
    log_level: str = "INFO"


settings = Settings()
