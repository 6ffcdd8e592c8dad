# motorconnect/core/config.py

import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
# Load environment variables from .env file
load_dotenv()

HOSTED_API_BASE_URL = "https://motor-connect-kenya.onrender.com"
LOCAL_API_BASE_URL = "http://localhost:3000"


class Settings(BaseSettings):
    PROJECT_NAME: str = "Motor Connect Storefront"
    VERSION: str = "1.0"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Marketplace API
    API_BASE_URL: str | None = os.getenv("API_BASE_URL")
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", 30))
    TOKEN_FILE: str = os.getenv("TOKEN_FILE", "./auth_token.json")
    LOGIN_PATH: str = "/login"
    SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "mc_token")
    SESSION_COOKIE_MAX_AGE: int = int(os.getenv("SESSION_COOKIE_MAX_AGE", 7 * 24 * 3600))

    # Commission / fee preview
    FEE_DEBOUNCE_MS: int = int(os.getenv("FEE_DEBOUNCE_MS", 500))
    DEFAULT_COMMISSION_RATE: float = 8.0
    VAT_RATE: float = 16.0
    FALLBACK_MIN_FEE: float = 50.0
    FALLBACK_MAX_FEE: float = 2000.0

    # Payments
    PAYMENT_POLL_INTERVAL_SECONDS: float = float(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", 3))
    PAYMENT_POLL_TIMEOUT_SECONDS: float = float(os.getenv("PAYMENT_POLL_TIMEOUT_SECONDS", 300))
    PAYMENT_INITIATE_RATE_LIMIT: str = os.getenv("PAYMENT_INITIATE_RATE_LIMIT", "10/minute")

    # Stripe / Paystack (public keys only, used by the card widgets)
    STRIPE_PUBLISHABLE_KEY: str | None = os.getenv("STRIPE_PUBLISHABLE_KEY")
    PAYSTACK_PUBLIC_KEY: str | None = os.getenv("PAYSTACK_PUBLIC_KEY")

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def api_base_url(self) -> str:
        """Hosted API in production, local backend everywhere else"""
        if self.is_production:
            return self.API_BASE_URL or HOSTED_API_BASE_URL
        return LOCAL_API_BASE_URL


# Initialize
settings = Settings()
