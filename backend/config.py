"""
Configuration management for the Bullion Order Backend.

Loads settings from .env via pydantic-settings.

Security notes:
    - PAYMENT_WEBHOOK_SECRET is required in production (webhooks fail closed without it)
    - validate_production_settings() enforces strict CORS in production
"""
import logging
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/orders.db"

    # ── Pricing ─────────────────────────────────────────────────────
    processing_fee_rate: Decimal = Decimal("0.05")   # 5% of subtotal
    tax_rate: Decimal = Decimal("0.0825")            # 8.25% of taxable amount
    shipping_fee: Decimal = Decimal("0")             # flat amount
    insurance_rate: Decimal = Decimal("0")           # fraction of subtotal

    # ── Catalog lookups ─────────────────────────────────────────────
    catalog_timeout_seconds: float = 2.0

    # ── Payment processor webhooks ──────────────────────────────────
    payment_webhook_secret: str = ""
    webhook_tolerance_seconds: int = 300
    webhook_signature_header: str = "stripe-signature"

    # ── Notifications ───────────────────────────────────────────────
    # Empty => notifications are only logged
    notification_url: str = ""
    notification_timeout_seconds: float = 5.0

    # ── Rate limiting (order creation) ──────────────────────────────
    order_rate_limit: int = 20
    order_rate_window_seconds: int = 60

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "bullion-orders-api"
    jwt_access_ttl_minutes: int = 15

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to verify caller access tokens."
                )
            if not self.payment_webhook_secret:
                raise ValueError(
                    "PAYMENT_WEBHOOK_SECRET must be set in production. "
                    "Payment webhooks are rejected without it."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if not self.payment_webhook_secret:
                warnings.append("PAYMENT_WEBHOOK_SECRET not set (all payment webhooks will be rejected)")
            if not self.jwt_secret:
                warnings.append("JWT_SECRET not set (authenticated endpoints will fail)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
