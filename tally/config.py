"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

# ===========================================
# Product Branding
# ===========================================
PRODUCT_NAME = "Tally"
PRODUCT_TAGLINE = "Every account you own, in one local ledger."
PRODUCT_VERSION = "1.0.0"
PRODUCT_DESCRIPTION = "Link your banks, brokerages and exchanges. Tally keeps the books."


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./tally.db"

    # Logging
    log_level: str = "INFO"

    # API Security
    api_key: str = ""  # Set in .env for production

    # Credential store
    credential_store_path: str = "~/.tally/credentials.json.enc"
    credential_key: Optional[str] = None  # Falls back to a machine-derived passphrase

    # Plaid
    plaid_client_id: str = ""
    plaid_secret: str = ""
    plaid_env: str = "sandbox"  # sandbox, production

    # Finicity (Mastercard Open Banking)
    finicity_partner_id: str = ""
    finicity_partner_secret: str = ""
    finicity_app_key: str = ""

    # Sync
    sync_lookback_days: int = 180
    sync_interval_seconds: int = 3600
    http_timeout_seconds: int = 30

    # Linking
    link_poll_interval_seconds: float = 2.0
    link_poll_timeout_seconds: float = 30.0
    search_timeout_seconds: float = 15.0

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
