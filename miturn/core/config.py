from typing import Any, List, Literal
from pydantic import AnyHttpUrl, field_validator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """
    Application configuration settings.

    Loads values from environment variables or .env file.
    """
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "MiTurn API"
    MAX_CIRCLE_MEMBERS: int = 20

    # SECURITY
    SECRET_KEY: str = Field(description="Secret key for JWT encoding")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # DATABASE
    DATABASE_URL: str = Field(description="Async SQLAlchemy connection URL")

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    # PAYOUT ROTATION
    PAYOUT_GRACE_PERIOD_DAYS: int = Field(default=3, ge=0, description="Days after a cycle is due before unpaid members stop blocking the payout")
    PAYOUT_PARTIAL_POLICY: Literal["proceed", "block"] = Field(default="proceed", description="Whether a payout goes ahead once the grace period is exceeded with members still unpaid")

    # ALLOCATIONS (cents)
    ALLOCATION_MIN_AMOUNT: int = Field(default=100, ge=0)
    ALLOCATION_MAX_AMOUNT: int = Field(default=50000, ge=0)
    ALLOCATION_SHARED_FUNDING: bool = Field(default=False, description="Goals of one user share a single daily cap")

    # REMINDERS
    REMINDER_URGENT_AFTER_DAYS: int = 1

    # BANKING (funds movement)
    BANKING_API_URL: str = "https://sandbox.plaid.com"
    BANKING_API_KEY: str | None = None
    BANKING_API_TIMEOUT: float = 30.0

    # ANALYTICS
    ANALYTICS_URL: str | None = None

    # EMAIL
    SMTP_TLS: bool = True
    SMTP_PORT: int | None = 587
    SMTP_HOST: str | None = None
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    EMAILS_FROM_EMAIL: str | None = "hello@miturn.app"
    EMAILS_FROM_NAME: str | None = "MiTurn"
    FRONTEND_URL: str = "https://miturn.app"

    # CELERY
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # RATE LIMITING
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Any) -> Any:
        """
        Parses comma-separated string of CORS origins into a list.
        """
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

settings = Settings()
