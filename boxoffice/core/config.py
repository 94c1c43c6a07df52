from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Boxoffice API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    # Shared with the identity service; tokens carry the user id in "sub".
    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    DATABASE_URL: str = "sqlite:///./boxoffice.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Reservation holds
    HOLD_DURATION_MINUTES: int = 15
    SWEEPER_INTERVAL_SECONDS: int = 300
    SWEEPER_IN_PROCESS: bool = True  # False when the Celery beat schedule owns the sweep

    # Stripe (PaymentIntents REST API)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com"
    STRIPE_WEBHOOK_SECRET: str = ""
    WEBHOOK_TOLERANCE_SECONDS: int = 300
    GATEWAY_TIMEOUT_SECONDS: int = 10
    GATEWAY_SANDBOX: bool = False  # If True, skip real Stripe calls and answer locally (dev only)
    DEFAULT_CURRENCY: str = "inr"


settings = Settings()
