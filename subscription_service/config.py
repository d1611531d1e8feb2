from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./subscriptions.db"
    BOOK_SERVICE_URL: str = "http://book-service"
    BOOK_SERVICE_CONNECT_TIMEOUT: float = 5.0
    BOOK_SERVICE_READ_TIMEOUT: float = 10.0

    CB_BOOK_SERVICE_FAILURE_RATE_THRESHOLD: float = 0.5
    CB_BOOK_SERVICE_WINDOW_TYPE: str = "count"
    CB_BOOK_SERVICE_WINDOW_SIZE: int = 10
    CB_BOOK_SERVICE_MINIMUM_CALLS: int = 5
    CB_BOOK_SERVICE_RESET_TIMEOUT: float = 30.0
    CB_BOOK_SERVICE_HALF_OPEN_MAX_CALLS: int = 1

    RETRY_AFTER_SECONDS: int = 30
    # Send the count read before the write so the book service rejects stale writes.
    COPIES_GUARD_ENABLED: bool = False
    SEED_DATA: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SUBSCRIPTION_SERVICE_",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
