"""Startup validation — catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys

from config.settings import settings

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations in production.
    """
    warnings: list[str] = []
    is_prod = settings.DATABASE_URL and "sqlite" not in settings.DATABASE_URL

    # Critical: a short explicit secret makes legacy tokens and cookies forgeable
    if settings.LINK_SECRET_KEY and len(settings.LINK_SECRET_KEY) < MIN_SECRET_LENGTH:
        if is_prod:
            logger.critical("LINK_SECRET_KEY must be at least %d characters.", MIN_SECRET_LENGTH)
            sys.exit(1)
        warnings.append("LINK_SECRET_KEY is short, use at least 32 characters")

    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to * — restrict in production")

    if not settings.ADMIN_API_KEY:
        warnings.append("ADMIN_API_KEY not set — admin link endpoints disabled")

    if not settings.API_BASE_URL:
        warnings.append("API_BASE_URL not set — issued links will use relative URLs")

    if not settings.STOREFRONT_API_BASE:
        if is_prod:
            warnings.append("STOREFRONT_API_BASE not set in production — carts are in-memory only")
        else:
            warnings.append("STOREFRONT_API_BASE not set — using in-memory storefront")

    if is_prod and not settings.ORDER_WEBHOOK_SECRET:
        warnings.append("ORDER_WEBHOOK_SECRET not set — order events are accepted unsigned")

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
