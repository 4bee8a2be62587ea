"""Configuration management for LeadSync."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration."""

    # Application Settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Security
    API_KEY: str = os.getenv("API_KEY", "")  # For API authentication

    # Lead store
    # "memory" keeps documents in-process (local development / tests),
    # "sql" persists them through SQLAlchemy at DATABASE_URL.
    LEAD_STORE_BACKEND: str = os.getenv("LEAD_STORE_BACKEND", "memory").lower()
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./leadsync.db")

    # Celery broker/backend for background bulk jobs
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Browse / search
    LEADS_PER_PAGE: int = int(os.getenv("LEADS_PER_PAGE", "50"))
    SEARCH_RESULTS_LIMIT: int = int(os.getenv("SEARCH_RESULTS_LIMIT", "100"))
    SEARCH_PREFIX_LIMIT: int = int(os.getenv("SEARCH_PREFIX_LIMIT", "50"))
    SEARCH_FALLBACK_SCAN_LIMIT: int = int(os.getenv("SEARCH_FALLBACK_SCAN_LIMIT", "1500"))
    # The recent-records scan also runs when the term is this short or shorter,
    # since prefix queries on short terms miss mixed-case names.
    SEARCH_FALLBACK_MAX_TERM_LENGTH: int = int(os.getenv("SEARCH_FALLBACK_MAX_TERM_LENGTH", "3"))
    SEARCH_MIN_PHONE_DIGITS: int = int(os.getenv("SEARCH_MIN_PHONE_DIGITS", "10"))

    # Debounce windows (seconds)
    FILTER_DEBOUNCE_SECONDS: float = float(os.getenv("FILTER_DEBOUNCE_SECONDS", "0.1"))
    SEARCH_DEBOUNCE_SECONDS: float = float(os.getenv("SEARCH_DEBOUNCE_SECONDS", "0.5"))

    # Bulk operations
    BATCH_CHUNK_SIZE: int = int(os.getenv("BATCH_CHUNK_SIZE", "5"))
    BATCH_CHUNK_DELAY_SECONDS: float = float(os.getenv("BATCH_CHUNK_DELAY_SECONDS", "1.0"))
    # Failed items are never retried unless this is raised. Message sends are not
    # idempotent, so a retry after an ambiguous provider error can double-send.
    BATCH_MAX_RETRIES: int = int(os.getenv("BATCH_MAX_RETRIES", "0"))

    # Messaging
    DEFAULT_COUNTRY_CODE: str = os.getenv("DEFAULT_COUNTRY_CODE", "91")
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_WHATSAPP_FROM: str = os.getenv("TWILIO_WHATSAPP_FROM", "")

    @classmethod
    def has_twilio_config(cls) -> bool:
        """Check if Twilio configuration is complete."""
        return all([
            cls.TWILIO_ACCOUNT_SID,
            cls.TWILIO_AUTH_TOKEN,
            cls.TWILIO_WHATSAPP_FROM
        ])

    @classmethod
    def use_sql_store(cls) -> bool:
        """Check if leads should be persisted through SQLAlchemy."""
        return cls.LEAD_STORE_BACKEND == "sql"


# Create a global config instance
config = Config()
