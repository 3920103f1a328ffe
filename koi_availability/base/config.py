from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    # === App Metadata ===
    PROJECT_NAME: str = "KoiAvailability"
    ENVIRONMENT: str = "dev"  # dev, staging, prod
    DEBUG_MODE: bool = False
    API_VERSION: str = "v1"

    # === Logging ===
    LOG_LEVEL: str = "INFO"
    ENABLE_JSON_LOGS: bool = False

    @property
    def LOG_LEVEL_NUMERIC(self) -> int:
        import logging
        return getattr(logging, self.LOG_LEVEL.upper(), logging.INFO)

    # === Booking Backend ===
    BACKEND_BASE_URL: str = "http://localhost:5261"
    MASTER_SCHEDULE_ENDPOINT: str = "/api/MasterSchedule/get-by-master/{master_id}"
    ALL_SCHEDULES_ENDPOINT: str = "/api/MasterSchedule/get-all"
    MASTER_ROSTER_ENDPOINT: str = "/api/Master/get-all"
    REQUEST_TIMEOUT_SECONDS: float = 15.0

    # === Fetch Resilience ===
    FETCH_MAX_ATTEMPTS: int = 3
    FETCH_BASE_DELAY_SECONDS: float = 1.0
    SCHEDULE_CACHE_PATH: str = ""  # empty keeps the cache in memory only

    # === Scheduling ===
    TIMEZONE: str = "Asia/Ho_Chi_Minh"

    # === HTTP Surface ===
    CORS_ORIGINS: List[str] = ["http://localhost:8081"]
    ENABLE_PROMETHEUS: bool = True

    # === Environment Shortcuts ===
    @property
    def IS_PROD(self) -> bool:
        return self.ENVIRONMENT.lower() == "prod"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> AppConfig:
    return AppConfig()


# Global config instance
settings = get_settings()
