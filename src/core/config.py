"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="marketplace-checkout", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key (for frontend)")
    stripe_timeout_seconds: float = Field(default=10.0, gt=0, description="Upper bound for a single Stripe API call")
    stripe_max_network_retries: int = Field(default=2, ge=0, description="Stripe SDK retries for connection errors")
    stripe_webhook_tolerance_seconds: int = Field(
        default=300,
        gt=0,
        description="Maximum age of a webhook signature timestamp",
    )

    # Checkout
    default_currency: str = Field(default="USD", description="Currency used when a product has none")
    max_order_quantity: int = Field(default=100, ge=1, description="Largest quantity accepted per order")
    order_number_max_attempts: int = Field(default=5, ge=1, description="Attempts before giving up on a unique order number")
    inventory_max_attempts: int = Field(default=5, ge=1, description="Compare-and-set attempts for an inventory decrement")
    effect_claim_timeout_seconds: int = Field(
        default=300,
        ge=0,
        description="Age after which an unfinished inventory claim may be taken over by a redelivery",
    )

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Marketplace <orders@marketplace.local>",
        description="From address for transactional emails",
    )

    # Invoices (Supabase Storage)
    invoice_storage_bucket: str = Field(default="invoice-documents", description="Storage bucket for invoice PDFs")
    invoice_url_expires_seconds: int = Field(
        default=7 * 24 * 3600,
        gt=0,
        description="Lifetime of the signed invoice link sent with the confirmation",
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Storefront URL used for redirects and email links",
    )

    # OpenAI (product validation)
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o", description="OpenAI model used to classify products")
    enable_ai_validation: bool | None = Field(
        default=None,
        description="Classify product content with OpenAI. Defaults to on when an API key is configured.",
    )

    # Admin
    admin_api_key: str = Field(default="", description="API key required for product edits")

    @model_validator(mode="after")
    def set_ai_validation_default(self) -> "Settings":
        """Enable AI validation by default only when an OpenAI key is present.

        If ENABLE_AI_VALIDATION is set explicitly it is already a bool and is kept.
        """
        if self.enable_ai_validation is None:
            self.enable_ai_validation = bool(self.openai_api_key)
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
