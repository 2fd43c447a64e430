from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    # App Configuration
    APP_NAME: str = "Tutoring Marketplace API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS
    ALLOWED_HOSTS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tutoring.db")

    # Authentication
    SECRET_KEY: str = os.getenv("SECRET_KEY", "your-secret-key-here")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Scheduling
    SCHEDULE_TIMEZONE: str = "UTC"  # wall-clock zone of session dates/times
    SLOT_GRANULARITY_MINUTES: int = 30
    MIN_SESSION_MINUTES: int = 30
    EARLY_JOIN_MINUTES: int = 10
    NO_SHOW_GRACE_MINUTES: int = 15
    NO_SHOW_SWEEP_INTERVAL_SECONDS: int = 300  # 0 disables the background sweep
    LOCK_TIMEOUT_SECONDS: float = 5.0

    # Pricing
    DEFAULT_CURRENCY: str = "BDT"
    MEETING_LINK_BASE: str = "https://meet.google.com/"

    # Cancellation refund tiers
    FULL_REFUND_HOURS: int = 24
    PARTIAL_REFUND_HOURS: int = 2
    PARTIAL_REFUND_RATIO: float = 0.5

    # Redis (throttle store); empty means in-process store
    REDIS_URL: str = ""

    # Booking request throttling
    BOOKING_RATE_LIMIT: int = 10
    BOOKING_RATE_WINDOW_SECONDS: int = 60

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create settings instance
settings = Settings()

# Update allowed hosts for production
if os.getenv("ENVIRONMENT") == "production":
    settings.ALLOWED_HOSTS.extend([
        "https://your-frontend-domain.com",
    ])
