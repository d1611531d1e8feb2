from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    BOOK_SERVICE_URL: str = "http://book-service"
    SUBSCRIPTION_SERVICE_URL: str = "http://subscription-service"
    UPSTREAM_TIMEOUT: float = 15.0
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="API_GATEWAY_",
        extra="ignore",
    )

    @property
    def routes(self) -> dict[str, str]:
        return {
            "book-service": self.BOOK_SERVICE_URL,
            "subscription-service": self.SUBSCRIPTION_SERVICE_URL,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
