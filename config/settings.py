"""App settings — loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///checkout_links.db")
    DATABASE_SSL = _env_bool("DATABASE_SSL")

    # Public base URL used to build shareable link URLs (e.g. "https://shop.example.com")
    API_BASE_URL = os.getenv("API_BASE_URL", "")
    LINK_PATH_PREFIX = os.getenv("LINK_PATH_PREFIX", "jump-to-checkout").strip("/")

    # Where resolved links send the shopper
    CHECKOUT_URL = os.getenv("CHECKOUT_URL", "/checkout")

    # Legacy token signing. Empty = generate once and persist in the database.
    LINK_SECRET_KEY = os.getenv("LINK_SECRET_KEY", "")
    LINK_ISSUER = os.getenv("LINK_ISSUER", "jptc")

    # Attribution cookies
    COOKIE_SECURE = _env_bool("COOKIE_SECURE")
    COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN") or None
    LINK_COOKIE_MAX_AGE = int(os.getenv("LINK_COOKIE_MAX_AGE", str(24 * 3600)))

    # Admin API key (for the link management endpoints)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")

    # Order system webhook secret (for conversion events)
    ORDER_WEBHOOK_SECRET = os.getenv("ORDER_WEBHOOK_SECRET", "")

    # Storefront (catalog + cart) REST API. Empty = in-memory storefront (dev only)
    STOREFRONT_API_BASE = os.getenv("STOREFRONT_API_BASE", "")
    STOREFRONT_API_KEY = os.getenv("STOREFRONT_API_KEY", "")
    STOREFRONT_TIMEOUT_SECONDS = float(os.getenv("STOREFRONT_TIMEOUT_SECONDS", "5"))

    # Plan tier + limits
    PLAN_TIER = os.getenv("PLAN_TIER", "free").lower()
    FREE_MAX_ACTIVE_LINKS = int(os.getenv("FREE_MAX_ACTIVE_LINKS", "5"))
    FREE_MAX_ITEMS_PER_LINK = int(os.getenv("FREE_MAX_ITEMS_PER_LINK", "1"))
    MIN_ITEMS_PER_LINK = int(os.getenv("MIN_ITEMS_PER_LINK", "1"))
    EXPIRY_GRACE_MINUTES = int(os.getenv("EXPIRY_GRACE_MINUTES", "0"))

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")
    ]

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
