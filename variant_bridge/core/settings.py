from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process configuration, read from the environment and an optional .env file.
    Field names match the environment variable names.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    APP_NAME: str = "variant-bridge"
    APP_ENV: str = "development"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = Field("json", description="'json' or 'console'")
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # --- Experiment ---
    EXPERIMENT_FLAG_KEY: str = "braze_message_experiment"
    EPPO_SDK_KEY: Optional[str] = None
    ASSIGNMENT_CACHE_CAPACITY: int = Field(100, gt=0)

    # --- Messaging platform ---
    BRAZE_API_KEY: Optional[str] = None
    BRAZE_REST_ENDPOINT: Optional[str] = None
    BRAZE_APP_ID: Optional[str] = None
    BRAZE_WEBHOOK_CAMPAIGN_ID: Optional[str] = None
    BRAZE_TIMEOUT_SECONDS: float = 10.0

    # --- Audience provider ---
    HIGHTOUCH_API_KEY: Optional[str] = None
    HIGHTOUCH_API_URL: str = "https://personalization.us-west-2.hightouch.com"
    HIGHTOUCH_COLLECTION_NAME: str = "customers"
    HIGHTOUCH_TIMEOUT_SECONDS: float = 5.0

    # Shared secret the messaging platform sends in X-Webhook-Secret.
    # Signature checks are skipped when unset.
    WEBHOOK_SECRET: Optional[str] = None

    @field_validator("APP_ENV")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}, got {v!r}")
        return v.lower()

    @property
    def messaging_configured(self) -> bool:
        return bool(self.BRAZE_API_KEY and self.BRAZE_REST_ENDPOINT)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def _reset_settings() -> None:
    """For tests: drop the cached instance so new env vars are picked up."""
    get_settings.cache_clear()
