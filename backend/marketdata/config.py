"""
MarketData Access Layer - Configuration Settings
"""
from typing import Any, Dict, List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
import json


DEFAULT_RATE_LIMITS: Dict[str, Dict[str, int]] = {
    "yahoo_finance": {
        "requests_per_minute": 100,
        "requests_per_hour": 2000,
        "requests_per_day": 20000,
    },
    "alpha_vantage": {
        "requests_per_minute": 5,
        "requests_per_hour": 0,
        "requests_per_day": 25,
    },
    "mock": {
        "requests_per_minute": 0,
        "requests_per_hour": 0,
        "requests_per_day": 0,
    },
}

DEFAULT_PROVIDER_COSTS: Dict[str, Dict[str, float]] = {
    "yahoo_finance": {"cost_per_call": 0.0, "monthly_subscription": 0.0, "cost_threshold": 0.0},
    "alpha_vantage": {"cost_per_call": 0.002, "monthly_subscription": 0.0, "cost_threshold": 100.0},
    "mock": {"cost_per_call": 0.0, "monthly_subscription": 0.0, "cost_threshold": 0.0},
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "MarketData Access Layer"
    APP_ENV: str = "development"
    # Forces DEBUG on the console sink regardless of LOG_LEVEL
    DEBUG: bool = False

    # =========================
    # Data Provider Selection
    # =========================
    DATA_PROVIDER_PRIMARY: str = "yahoo_finance"
    DATA_PROVIDER_FALLBACK: Optional[str] = None
    DATA_PROVIDER_STRATEGY: str = "primary"
    DATA_PROVIDER_ENABLE_AUTOMATIC_FALLBACK: bool = True

    @field_validator("DATA_PROVIDER_FALLBACK", mode="before")
    @classmethod
    def empty_fallback_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # =========================
    # Health Monitoring
    # =========================
    HEALTH_CHECK_INTERVAL_SECONDS: int = 60
    HEALTH_FAILURE_THRESHOLD: int = 5
    ENABLE_PROVIDER_HEALTH_MONITOR: bool = True

    # =========================
    # Data Providers - Endpoints
    # =========================
    YAHOO_FINANCE_BASE_URL: str = "https://query1.finance.yahoo.com"
    YAHOO_FINANCE_TIMEOUT: int = 10
    YAHOO_FINANCE_MAX_RETRIES: int = 3

    ALPHA_VANTAGE_API_KEY: str = ""
    ALPHA_VANTAGE_BASE_URL: str = "https://www.alphavantage.co/query"
    ALPHA_VANTAGE_TIMEOUT: int = 10
    ALPHA_VANTAGE_MAX_RETRIES: int = 3

    MOCK_PROVIDER_DELAY_MS: int = 100

    # =========================
    # Rate Limit Settings
    # =========================
    # Block until the window resets instead of failing fast
    RATE_LIMIT_WAIT: bool = True
    PROVIDER_RATE_LIMITS: Dict[str, Dict[str, int]] = DEFAULT_RATE_LIMITS

    # =========================
    # Cost Tracking
    # =========================
    COST_TRACKING_ENABLED: bool = True
    COST_ENFORCE_LIMITS: bool = False
    COST_WARNING_THRESHOLD_PERCENTAGE: float = 80.0
    PROVIDER_COSTS: Dict[str, Dict[str, float]] = DEFAULT_PROVIDER_COSTS

    @field_validator("PROVIDER_RATE_LIMITS", "PROVIDER_COSTS", mode="before")
    @classmethod
    def parse_provider_table(cls, v: Any):
        if isinstance(v, str):
            return json.loads(v)
        return v

    # =========================
    # Cache
    # =========================
    CACHE_ENABLED: bool = True
    CACHE_BACKEND: str = "redis"
    CACHE_PREFIX: str = "marketdata"
    CACHE_QUOTE_TTL: int = 900
    CACHE_HISTORICAL_TTL: int = 86400
    CACHE_FUNDAMENTALS_TTL: int = 21600
    CACHE_PROFILE_TTL: int = 604800
    CACHE_SEARCH_TTL: int = 3600
    CACHE_ENABLE_WARMING: bool = False
    CACHE_MAX_SIZE: int = 10000
    # Symbols warmed at startup when warming is enabled
    CACHE_WARM_SYMBOLS: List[str] = ["AAPL", "MSFT", "GOOGL", "AMZN", "NVDA"]

    @field_validator(
        "CACHE_QUOTE_TTL",
        "CACHE_HISTORICAL_TTL",
        "CACHE_FUNDAMENTALS_TTL",
        "CACHE_PROFILE_TTL",
        "CACHE_SEARCH_TTL",
    )
    @classmethod
    def ttl_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("cache TTLs must be positive (seconds)")
        return v

    # =========================
    # Redis
    # =========================
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ""
    REDIS_DB: int = 0
    # Direct REDIS_URL from environment (for Docker - overrides individual settings)
    REDIS_URL: str = ""

    @property
    def redis_url(self) -> str:
        """Get the Redis URL."""
        if self.REDIS_URL:
            return self.REDIS_URL
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    @property
    def console_log_level(self) -> str:
        return "DEBUG" if self.DEBUG else self.LOG_LEVEL


# Create global settings instance
settings = Settings()
