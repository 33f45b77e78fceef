"""Application configuration"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./hargapangan.db"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Rate limiting
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_AUTH_PER_MINUTE: int = 5
    RATE_LIMIT_SYNC_PER_HOUR: int = 10

    # Upstream price API (Badan Pangan Nasional panel harga)
    PRICE_API_BASE_URL: str = "https://api-panelhargav2.badanpangan.go.id/api"
    PRICE_API_TIMEOUT_SECONDS: float = 30.0
    PRICE_API_MAX_ATTEMPTS: int = 3
    PRICE_API_BACKOFF_SECONDS: float = 2.0

    # Plausibility band for synced prices (Rupiah)
    PRICE_MIN: int = 100
    PRICE_MAX: int = 1_000_000

    # Reconciliation
    NOTABLE_CHANGE_PERCENT: float = 5.0

    # Overrides
    OVERRIDE_APPROVAL_THRESHOLD_PERCENT: float = 50.0
    OVERRIDE_TTL_HOURS: int = 24

    # Scheduled sync
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL_HOURS: int = 6
    SYNC_INITIAL_DELAY_SECONDS: int = 30
    SYNC_DEFAULT_LEVEL_ID: int = 3

    # Upstream passthrough cache
    UPSTREAM_CACHE_TTL_SECONDS: int = 1800

    # Uploads and imports
    DATA_DIR: str = "./data"
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    IMPORT_ERROR_SAMPLE_SIZE: int = 5

    # Auth
    TOKEN_TTL_HOURS: int = 12
    ADMIN_USERNAME: str = "admin"
    ADMIN_EMAIL: str = "admin@hargapangan.local"
    ADMIN_PASSWORD: str = ""

    class Config:
        env_file = ".env"


settings = Settings()
