"""Application configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
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
    app_name: str = Field(default="order-settlement-engine", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Request limits
    max_request_body_size: int = Field(default=65536, gt=0, description="Maximum request body size in bytes")

    # Storage
    storage_backend: Literal["supabase", "memory"] = Field(
        default="supabase",
        description="Persistence backend. 'memory' keeps state in-process (single instance only).",
    )
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Commerce constants (all amounts in minor currency units)
    currency: str = Field(default="THB", description="Store currency code")
    tax_rate_percent: int = Field(default=7, ge=0, le=100, description="Flat VAT rate in percent")
    free_shipping_threshold: int = Field(
        default=100000, ge=0, description="Subtotal at or above which shipping is free"
    )
    default_shipping_method: str = Field(default="standard", description="Shipping method used when none is given")

    # PromptPay
    promptpay_merchant_id: str = Field(default="", description="PromptPay proxy id (phone, national id or e-wallet)")
    promptpay_webhook_secret: str = Field(default="", description="Shared secret for PromptPay webhook HMAC")
    payment_qr_expiry_minutes: int = Field(default=15, gt=0, description="Minutes until a PromptPay QR expires")

    # Card gateway
    card_gateway_merchant_id: str = Field(default="", description="Card gateway merchant id")
    card_gateway_secret_key: str = Field(default="", description="Card gateway secret used for request/webhook hashes")
    card_gateway_api_url: str = Field(default="https://api.2c2p.com", description="Card gateway API base URL")
    card_gateway_timeout_seconds: float = Field(default=30.0, gt=0, description="Card gateway request timeout")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Shop <noreply@example.com>",
        description="From address for transactional emails",
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for email links",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_promptpay_configured(self) -> bool:
        """Check if PromptPay credentials are present."""
        return bool(self.promptpay_merchant_id and self.promptpay_webhook_secret)

    @property
    def is_card_gateway_configured(self) -> bool:
        """Check if card gateway credentials are present."""
        return bool(self.card_gateway_merchant_id and self.card_gateway_secret_key)


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
