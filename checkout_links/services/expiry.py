"""Link expiry policies.

Expiry is never a stored state transition: it is evaluated on demand when a
link is resolved. An active link can be expired.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from config.settings import settings
from checkout_links.db.link_store import as_utc
from checkout_links.models.link import Link
from checkout_links.services.entitlements import Capability, EntitlementPolicy


class ExpiryPolicy:
    """Base tier: issuance ignores the expiry hint, stored expiry is enforced."""

    def expiry_for(self, hint_hours: int, now: datetime) -> tuple[int, Optional[datetime]]:
        """Return (expiry_hours, expires_at) to store for a new link."""
        return 0, None

    def is_expired(self, link: Link, now: datetime) -> bool:
        expires_at = as_utc(link.expires_at)
        return expires_at is not None and expires_at < now

    def accept_expired_legacy(self, payload: dict, now: float) -> bool:
        """Whether a legacy token past its embedded ``exp`` may still resolve at ``now`` (epoch)."""
        return False


BaseTierExpiryPolicy = ExpiryPolicy


class HonorHintExpiryPolicy(ExpiryPolicy):
    """Stores ``now + hint`` as the expiry and allows an optional grace period."""

    def __init__(self, grace: timedelta = timedelta(0)):
        self.grace = grace

    def expiry_for(self, hint_hours: int, now: datetime) -> tuple[int, Optional[datetime]]:
        if hint_hours <= 0:
            return 0, None
        return hint_hours, now + timedelta(hours=hint_hours)

    def is_expired(self, link: Link, now: datetime) -> bool:
        expires_at = as_utc(link.expires_at)
        return expires_at is not None and expires_at + self.grace < now

    def accept_expired_legacy(self, payload: dict, now: float) -> bool:
        exp = int(payload.get("exp") or 0)
        if not exp or not self.grace:
            return False
        expired_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        return expired_at + self.grace >= datetime.fromtimestamp(now, tz=timezone.utc)


def expiry_policy_for(entitlements: EntitlementPolicy) -> ExpiryPolicy:
    if entitlements.current().has(Capability.LINK_EXPIRY):
        return HonorHintExpiryPolicy(grace=timedelta(minutes=settings.EXPIRY_GRACE_MINUTES))
    return BaseTierExpiryPolicy()
