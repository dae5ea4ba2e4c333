"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class MetadataKeys(BaseModel):
    """Metadata field names that carry CRM identifiers.

    Donation forms and integrations label these differently, so each is a
    set of candidate keys checked in order.
    """

    account: list[str] = Field(default_factory=list)
    contact: list[str] = Field(default_factory=list)
    campaign: list[str] = Field(default_factory=list)
    record_type: list[str] = Field(default_factory=list)


def _split_keys(raw: str) -> list[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    STRIPE_WEBHOOK_SECRET: str = ""  # Signature verification is skipped when empty
    STRIPE_WEBHOOK_TOLERANCE: int = 300  # Seconds

    # Organization
    ORG_CURRENCY: str = "USD"

    # Metadata keys (comma-separated)
    METADATA_ACCOUNT_KEYS: str = "sf_account_id,account_id"
    METADATA_CONTACT_KEYS: str = "sf_contact_id,contact_id"
    METADATA_CAMPAIGN_KEYS: str = "sf_campaign_id,campaign"
    METADATA_RECORD_TYPE_KEYS: str = "sf_record_type_id,record_type_id"

    # Event processing
    WORKER_COUNT: int = 4
    WORKER_QUEUE_SIZE: int = 1000

    # Downstream CRM bridge
    CRM_SINK_URL: str = ""  # Events are only logged when empty
    CRM_SINK_TOKEN: str = ""

    # Monitoring
    SENTRY_DSN: str = ""

    def metadata_keys(self) -> MetadataKeys:
        """Build the MetadataKeys value object from the comma-separated settings."""
        return MetadataKeys(
            account=_split_keys(self.METADATA_ACCOUNT_KEYS),
            contact=_split_keys(self.METADATA_CONTACT_KEYS),
            campaign=_split_keys(self.METADATA_CAMPAIGN_KEYS),
            record_type=_split_keys(self.METADATA_RECORD_TYPE_KEYS),
        )


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
