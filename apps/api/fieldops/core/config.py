"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str

    # Internal scheduled endpoints (cron ticks)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Worker
    WORKER_POLL_INTERVAL: int = 5  # seconds between polls
    WORKER_BATCH_SIZE: int = 10
    WORKER_CONCURRENCY: int = 2  # concurrent poll loops per process
    WORKER_LEASE_SECONDS: int = 300  # claim lease before another worker may retake a job
    WORKER_JOB_TYPES: str = ""  # comma-separated filter, empty = all types

    # Retry backoff (seconds)
    JOB_RETRY_BASE_SECONDS: int = 30
    JOB_RETRY_MAX_SECONDS: int = 3600
    JOB_ERROR_MAX_LENGTH: int = 500

    # Retry budgets per job type
    AUTOSEND_MAX_AGE_HOURS: int = 24  # give up deferring a draft after this long
    MESSAGE_SEND_MAX_ATTEMPTS: int = 8
    MESSAGE_RECEIVED_MAX_ATTEMPTS: int = 5

    # Draft generation (OpenAI Responses API)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_THINK_MODEL: str = "gpt-5-mini"  # plan pass; empty disables it
    OPENAI_WRITE_MODEL: str = "gpt-4.1"
    AI_REQUEST_TIMEOUT_SECONDS: float = 45.0

    # SMS transport (Twilio)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""
    TWILIO_API_BASE_URL: str = "https://api.twilio.com"

    # Email transport (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@example.com"

    # DM transport (page messaging relay)
    DM_WEBHOOK_URL: str = ""
    DM_WEBHOOK_TOKEN: str = ""

    TRANSPORT_TIMEOUT_SECONDS: float = 15.0
    TRANSPORT_DRY_RUN: bool = False  # log sends instead of calling providers

    # Scheduling
    APPOINTMENT_TIMEZONE: str = "America/New_York"

    @property
    def openai_configured(self) -> bool:
        """Draft generation needs an API key and a write model."""
        return bool(self.OPENAI_API_KEY and self.OPENAI_WRITE_MODEL)


settings = Settings()
