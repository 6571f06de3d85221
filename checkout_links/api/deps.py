"""Shared FastAPI dependencies: admin auth and service factories."""
from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from checkout_links.db.engine import get_session
from checkout_links.services.attribution import ConversionAttribution
from checkout_links.services.entitlements import EntitlementPolicy, get_entitlement_policy
from checkout_links.services.expiry import ExpiryPolicy, expiry_policy_for
from checkout_links.services.lifecycle import LinkLifecycle
from checkout_links.services.resolution import ResolutionEngine
from checkout_links.services.secret_key import get_secret_key
from checkout_links.services.storefront import Storefront, get_storefront
from checkout_links.services.visitor_session import SessionStore, get_session_store


def verify_admin(x_admin_key: str = Header(None)) -> None:
    """Verify admin API key (timing-safe)."""
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise HTTPException(503, "Admin endpoints disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(403, "Invalid admin key")


def get_expiry_policy(
    policy: EntitlementPolicy = Depends(get_entitlement_policy),
) -> ExpiryPolicy:
    return expiry_policy_for(policy)


def get_lifecycle(
    session: AsyncSession = Depends(get_session),
    policy: EntitlementPolicy = Depends(get_entitlement_policy),
    expiry: ExpiryPolicy = Depends(get_expiry_policy),
) -> LinkLifecycle:
    return LinkLifecycle(session, policy, expiry)


def get_resolution_engine(
    session: AsyncSession = Depends(get_session),
    storefront: Storefront = Depends(get_storefront),
    sessions: SessionStore = Depends(get_session_store),
    expiry: ExpiryPolicy = Depends(get_expiry_policy),
    secret: str = Depends(get_secret_key),
) -> ResolutionEngine:
    return ResolutionEngine(session, storefront, sessions, expiry, secret)


def get_attribution(
    session: AsyncSession = Depends(get_session),
    sessions: SessionStore = Depends(get_session_store),
) -> ConversionAttribution:
    return ConversionAttribution(session, sessions)
