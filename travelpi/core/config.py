"""
Application configuration and settings management
"""
import os
from typing import Optional
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "TravelPi"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    LOG_FILE: Optional[str] = None

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./travelpi.db"
    ).replace("postgres://", "postgresql://", 1)

    # Authentication
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-in-production")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days

    # Pi Network
    PI_API_URL: str = os.getenv("PI_API_URL", "https://api.minepi.com")
    PI_API_KEY: Optional[str] = os.getenv("PI_API_KEY")
    PI_SECRET_KEY: Optional[str] = os.getenv("PI_SECRET_KEY")  # webhook HMAC secret
    PI_REQUEST_TIMEOUT: int = 30
    PI_WEBHOOK_TOLERANCE_SECONDS: int = 300  # 5 minutes
    CASHBACK_RATE: float = 0.02

    # Redis (rate limiting, caching)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SECONDS: int = 3600
    HOTEL_CACHE_TTL: int = 3600
    HOTEL_LIST_CACHE_TTL: int = 300

    # Fraud scoring
    FRAUD_AUDIT_THRESHOLD: int = 70
    FRAUD_BLOCK_THRESHOLD: int = 80

    # Booking pricing
    TAX_RATE: float = 0.10
    SERVICE_FEE_RATE: float = 0.05

    # Pagination
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with placeholder filtering"""
    s = Settings()
    placeholders = ["XXXX", "your-", "replace-"]

    def is_placeholder(val: Optional[str]) -> bool:
        if not val:
            return True
        return any(p in val for p in placeholders) or any(p in val.lower() for p in placeholders)

    if is_placeholder(s.PI_API_KEY):
        s.PI_API_KEY = None
    if is_placeholder(s.PI_SECRET_KEY):
        s.PI_SECRET_KEY = None

    return s


# Global settings instance
settings = get_settings()
