"""Process-wide signing secret for legacy tokens and attribution cookies.

Loaded once at startup and injected; never mutated afterwards and never
returned by any endpoint.
"""
from __future__ import annotations

import logging
import secrets

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from checkout_links.db.tables import AppSecretRow

logger = logging.getLogger(__name__)

SECRET_NAME = "link_secret_key"


async def load_or_create_secret(session: AsyncSession) -> str:
    """Return the configured secret, or the persisted one (generating it once)."""
    if settings.LINK_SECRET_KEY:
        return settings.LINK_SECRET_KEY

    existing = (await session.execute(
        select(AppSecretRow.value).where(AppSecretRow.name == SECRET_NAME)
    )).scalar_one_or_none()
    if existing:
        return existing

    value = secrets.token_urlsafe(48)
    session.add(AppSecretRow(name=SECRET_NAME, value=value))
    try:
        await session.commit()
        logger.info("Generated and persisted a new link signing secret")
        return value
    except IntegrityError:
        # Another worker created it first
        await session.rollback()
        return (await session.execute(
            select(AppSecretRow.value).where(AppSecretRow.name == SECRET_NAME)
        )).scalar_one()


def get_secret_key(request: Request) -> str:
    """FastAPI dependency: the secret loaded during startup."""
    secret = getattr(request.app.state, "secret_key", None)
    if not secret:
        raise RuntimeError("Link secret key not loaded; application lifespan did not run")
    return secret
