"""
Configuration module for Sophia services.
Centralizes environment variable access and feature flags.
"""

import os


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sophia.db")

DEFAULT_JWT_SECRET = "sophia-dev-secret-change-me"
JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "7"))

GOOGLE_SERVICE_ACCOUNT_EMAIL = os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL")
GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY = (os.getenv("GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY") or "").replace("\\n", "\n") or None
GOOGLE_CLOUD_PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT_ID")
GA_ACCOUNT_ID = os.getenv("GA_ACCOUNT_ID")
GOOGLE_ANALYTICS_ENABLED = bool(GOOGLE_SERVICE_ACCOUNT_EMAIL and GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY)

GA_TIME_ZONE = os.getenv("GA_TIME_ZONE", "Europe/Warsaw")
GA_CURRENCY_CODE = os.getenv("GA_CURRENCY_CODE", "PLN")
GA_INDUSTRY_CATEGORY = os.getenv("GA_INDUSTRY_CATEGORY", "TECHNOLOGY")

GA_SCOPES = [
    "https://www.googleapis.com/auth/analytics",
    "https://www.googleapis.com/auth/analytics.edit",
    "https://www.googleapis.com/auth/analytics.manage.users",
    "https://www.googleapis.com/auth/analytics.readonly",
]

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_ENABLED = bool(OPENAI_API_KEY)
AI_LIVE_CALLS = os.getenv("AI_LIVE_CALLS", "false").lower() in ("1", "true", "yes")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_ENABLED = bool(STRIPE_SECRET_KEY)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

SCREENSHOT_DIR = os.getenv("SCREENSHOT_DIR", "screenshots")
BROWSER_TIMEOUT_MS = int(os.getenv("BROWSER_TIMEOUT_MS", "30000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def is_google_analytics_enabled() -> bool:
    """Check if Google service-account credentials are configured."""
    return GOOGLE_ANALYTICS_ENABLED


def is_openai_enabled() -> bool:
    """Check if OpenAI API is configured."""
    return OPENAI_ENABLED


def is_stripe_enabled() -> bool:
    """Check if Stripe API is configured."""
    return STRIPE_ENABLED
