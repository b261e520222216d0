"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env
file as a fallback. Secrets (the JWT signing key and the card encryption key)
have no defaults, so the service refuses to start without them.

Settings are grouped by the part of the system that reads them:
  - Ledger / Transfer Engine: currency precision, lock timeouts, completion
    retries, overdraft allowances, verification-gated movement limits
  - Notification Dispatch: admin threshold and the outbound webhook
  - Read Projection: the polling interval advertised to clients

Usage:
    from bankcore.config import settings
    print(settings.LEDGER_TIMEOUT_SECONDS)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the banking core.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
      - CARD_ENCRYPTION_KEY: Fernet key for encrypting card data at rest
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Bank Core"
    APP_VERSION: str = "0.2.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/bank.db"

    # --- Authentication ---
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Card Encryption ---
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    CARD_ENCRYPTION_KEY: str
    CARD_VALIDITY_YEARS: int = 4

    # --- Ledger ---
    # ISO 4217 code and the number of minor units (2 for USD cents)
    CURRENCY: str = "USD"
    CURRENCY_MINOR_UNITS: int = 2
    BANK_ROUTING_NUMBER: str = "021000021"

    # Upper bound on waiting for an account lock or a ledger read
    LEDGER_TIMEOUT_SECONDS: float = 5.0

    # How many times the post-apply completion record is written before an
    # operator alert is raised
    RECORD_WRITE_ATTEMPTS: int = 3

    # Overdraft allowance for account kinds that may carry a negative balance
    CREDIT_LINE_LIMIT_CENTS: int = 500_000
    MORTGAGE_LINE_LIMIT_CENTS: int = 50_000_000

    # Per-movement ceiling, gated by identity-verification status
    UNVERIFIED_MOVEMENT_LIMIT_CENTS: int = 1_000_000
    VERIFIED_MOVEMENT_LIMIT_CENTS: int = 100_000_000

    # Movements stuck before "applied" longer than this are expired by the
    # admin sweep
    STALE_MOVEMENT_SECONDS: int = 300

    # --- Notifications ---
    # Movements above this amount are also reported to administrators
    ADMIN_NOTIFICATION_THRESHOLD_CENTS: int = 1_000_000
    # When set, email/SMS messages are POSTed here; otherwise they are logged
    NOTIFICATION_WEBHOOK_URL: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # --- Identity verification provider ---
    VERIFICATION_WEBHOOK_SECRET: str = "change-me"

    # --- Read projection ---
    PROJECTION_POLL_INTERVAL_SECONDS: int = 2
    CHANGE_FEED_HEARTBEAT_SECONDS: float = 15.0

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
