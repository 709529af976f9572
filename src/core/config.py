"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

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
    app_name: str = Field(default="marketplace-fulfillment", description="Application name")
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

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(..., description="Supabase signing key JWK (JSON string) for JWT token verification")

    # Persistence
    optimistic_update_max_attempts: int = Field(
        default=5,
        description="Read-modify-write attempts before a concurrent order update gives up",
    )

    # Carrier webhooks
    fedex_webhook_secret: str = Field(default="", description="FedEx webhook HMAC secret")
    shiprocket_webhook_token: str = Field(default="", description="Shiprocket x-shiprocket-token shared secret")
    ups_webhook_secret: str = Field(default="", description="UPS webhook HMAC secret")

    # Carrier APIs
    carrier_http_timeout_seconds: float = Field(default=10.0, description="Timeout for outbound carrier calls")
    carrier_max_retries: int = Field(default=3, description="Retry attempts for retryable carrier failures")

    fedex_api_url: str = Field(default="https://apis-sandbox.fedex.com", description="FedEx API base URL")
    fedex_client_id: str = Field(default="", description="FedEx OAuth client id")
    fedex_client_secret: str = Field(default="", description="FedEx OAuth client secret")
    fedex_account_number: str = Field(default="", description="FedEx shipping account number")

    shiprocket_api_url: str = Field(
        default="https://apiv2.shiprocket.in/v1/external",
        description="Shiprocket API base URL",
    )
    shiprocket_email: str = Field(default="", description="Shiprocket API user email")
    shiprocket_password: str = Field(default="", description="Shiprocket API user password")
    shiprocket_pickup_location: str = Field(default="Primary", description="Shiprocket pickup location name")

    ups_api_url: str = Field(default="https://wwwcie.ups.com", description="UPS API base URL")
    ups_client_id: str = Field(default="", description="UPS OAuth client id")
    ups_client_secret: str = Field(default="", description="UPS OAuth client secret")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_webhook_secret_test: str = Field(default="", description="Stripe test-mode webhook signing secret")

    # Razorpay
    razorpay_key_id: str = Field(default="", description="Razorpay key id")
    razorpay_key_secret: str = Field(default="", description="Razorpay key secret")
    razorpay_webhook_secret: str = Field(default="", description="Razorpay webhook secret")

    # PayPal
    paypal_api_url: str = Field(default="https://api-m.sandbox.paypal.com", description="PayPal REST API base URL")
    paypal_client_id: str = Field(default="", description="PayPal REST client id")
    paypal_client_secret: str = Field(default="", description="PayPal REST client secret")
    paypal_webhook_id: str = Field(default="", description="PayPal webhook id used for signature verification")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Credentials a gateway needs before its webhooks can be verified.
_GATEWAY_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "stripe": ("stripe_secret_key", "stripe_webhook_secret"),
    "razorpay": ("razorpay_webhook_secret",),
    "paypal": ("paypal_client_id", "paypal_client_secret", "paypal_webhook_id"),
}


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


def get_gateway_credentials(gateway: str) -> dict[str, str] | None:
    """Get the active credentials for a payment gateway.

    Args:
        gateway: Gateway name (stripe, razorpay, paypal).

    Returns:
        dict | None: Credential values keyed by setting name, or None when
        any required credential is missing.
    """
    settings = get_settings()
    required = _GATEWAY_REQUIRED_FIELDS.get(gateway)
    if required is None:
        return None

    prefix = f"{gateway}_"
    credentials = {
        name[len(prefix):]: value
        for name, value in settings.model_dump().items()
        if name.startswith(prefix) and isinstance(value, str)
    }
    if not all(getattr(settings, name) for name in required):
        return None
    return credentials
