from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./paa_monitor.db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Rendering sessions
    PROXY_POOL: str = ""
    HEADLESS: bool = True
    DEFAULT_DEVICE: str = "mobile"
    SEARCH_BASE_URL: str = "https://www.google.com/search"
    EGRESS_LOOKUP_URL: str = ""

    # Extraction budgets
    MAX_NODES: int = 220
    MAX_RUNTIME_MS: int = 45000
    NAVIGATION_TIMEOUT_MS: int = 30000
    NETWORK_IDLE_TIMEOUT_MS: int = 10000
    CONSENT_WAIT_MS: int = 1000
    CHILD_WAIT_TIMEOUT_MS: int = 5000
    CHILD_POLL_INTERVAL_MS: int = 150
    CLICK_DELAY_MS: int = 25
    CONSENSUS_PARALLELISM: int = 1

    # Tracking
    TRACKER_INTERVAL_MINUTES: int = 60
    DEFAULT_CHECK_INTERVAL_HOURS: int = 24

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
