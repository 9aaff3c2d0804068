import os
from pydantic import BaseModel

class Settings(BaseModel):
    # Basic
    ENV: str = os.getenv("ENV", "dev")

    # Upstream listing search API
    LISTINGS_PROVIDER: str = os.getenv("LISTINGS_PROVIDER", "http")  # mock | http
    LISTINGS_BASE_URL: str = os.getenv("LISTINGS_BASE_URL", "https://api.repliers.io/listings")
    LISTINGS_API_KEY: str | None = os.getenv("LISTINGS_API_KEY")

    # Brokerage office the market pulse is scoped to
    OFFICE_ID: str | None = os.getenv("OFFICE_ID")
    OFFICE_NAME: str = os.getenv("OFFICE_NAME", "Spyglass Realty")

    # Retry / deadline
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY_MS: int = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))
    UPSTREAM_TIMEOUT_SECONDS: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "10"))
    UPSTREAM_DEADLINE_SECONDS: float = float(os.getenv("UPSTREAM_DEADLINE_SECONDS", "30"))

    # Comparable search
    ADDRESS_RESULT_CAP: int = int(os.getenv("ADDRESS_RESULT_CAP", "25"))
    DEFAULT_RESULT_CAP: int = int(os.getenv("DEFAULT_RESULT_CAP", "50"))
    MAX_RESULT_CAP: int = int(os.getenv("MAX_RESULT_CAP", "50"))
    ADDRESS_FETCH_SIZE: int = int(os.getenv("ADDRESS_FETCH_SIZE", "50"))
    SOLD_LOOKBACK_DAYS: int = int(os.getenv("SOLD_LOOKBACK_DAYS", "180"))

    # Market pulse
    CLOSED_LOOKBACK_DAYS: int = int(os.getenv("CLOSED_LOOKBACK_DAYS", "30"))
    SNAPSHOT_MAX_AGE_HOURS: float = float(os.getenv("SNAPSHOT_MAX_AGE_HOURS", "24"))
    SNAPSHOT_KEY: str = os.getenv("SNAPSHOT_KEY", "market_pulse:latest")
    SNAPSHOT_HISTORY_SIZE: int = int(os.getenv("SNAPSHOT_HISTORY_SIZE", "48"))

    # Security
    API_KEY: str | None = os.getenv("API_KEY")
    RATE_LIMIT_RPM: int = int(os.getenv("RATE_LIMIT_RPM", "60"))
    RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "120"))

    # CORS
    ALLOW_ORIGINS: str = os.getenv("ALLOW_ORIGINS", "*")

    # Cache
    USE_REDIS: bool = os.getenv("USE_REDIS", "false").lower() == "true"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Metrics
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "true").lower() == "true"

settings = Settings()
