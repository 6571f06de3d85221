"""
Plan entitlements: capability limits consulted by link issuance/activation.

Free tier: 5 active links, 1 item per link, links never expire.
Pro tier: unlimited links and items, expiry hints honored, extra capabilities
(analytics, export, coupons, webhooks, API) reported as available. Those
capabilities are only reported here; this service does not implement them.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from config.settings import settings

logger = logging.getLogger(__name__)

UNLIMITED_LINKS = 999_999
UNLIMITED_ITEMS = 999
UPGRADE_CAPABILITY_LINKS = "max_active_links"
UPGRADE_CAPABILITY_ITEMS = "max_items_per_link"


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"


class Capability(str, Enum):
    LINK_EXPIRY = "link_expiry"
    ANALYTICS = "analytics"
    EXPORT = "export"
    COUPONS = "coupons"
    TEMPLATES = "templates"
    WEBHOOKS = "webhooks"
    API = "api"


@dataclass(frozen=True)
class Entitlement:
    tier: Tier
    is_elevated: bool
    max_active_links: int
    max_items_per_link: int
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "is_elevated": self.is_elevated,
            "max_active_links": self.max_active_links,
            "max_items_per_link": self.max_items_per_link,
            "capabilities": sorted(c.value for c in self.capabilities),
        }


class EntitlementPolicy(ABC):
    """Answers "may the operator do this?" Never mutates anything."""

    @abstractmethod
    def current(self) -> Entitlement:
        ...

    def can_activate_link(self, active_count: int) -> bool:
        """True if one more link may become (or be created) active."""
        ent = self.current()
        if ent.is_elevated:
            return True
        return active_count < ent.max_active_links

    def allows_selection_size(self, item_count: int) -> bool:
        ent = self.current()
        if ent.is_elevated:
            return True
        return item_count <= ent.max_items_per_link


class PlanEntitlementPolicy(EntitlementPolicy):
    """Static plan-tier limits (the default Entitlement Service)."""

    def __init__(self, entitlement: Entitlement):
        self._entitlement = entitlement

    def current(self) -> Entitlement:
        return self._entitlement


def free_tier(max_active_links: int = 5, max_items_per_link: int = 1) -> Entitlement:
    return Entitlement(
        tier=Tier.FREE,
        is_elevated=False,
        max_active_links=max_active_links,
        max_items_per_link=max_items_per_link,
    )


def pro_tier() -> Entitlement:
    return Entitlement(
        tier=Tier.PRO,
        is_elevated=True,
        max_active_links=UNLIMITED_LINKS,
        max_items_per_link=UNLIMITED_ITEMS,
        capabilities=frozenset(Capability),
    )


def entitlement_policy_from_settings() -> EntitlementPolicy:
    try:
        tier = Tier(settings.PLAN_TIER)
    except ValueError:
        logger.warning("Unknown PLAN_TIER %r, falling back to free", settings.PLAN_TIER)
        tier = Tier.FREE
    if tier == Tier.PRO:
        return PlanEntitlementPolicy(pro_tier())
    return PlanEntitlementPolicy(free_tier(
        max_active_links=settings.FREE_MAX_ACTIVE_LINKS,
        max_items_per_link=settings.FREE_MAX_ITEMS_PER_LINK,
    ))


_policy: EntitlementPolicy | None = None


def get_entitlement_policy() -> EntitlementPolicy:
    """FastAPI dependency: one policy per process, built from settings."""
    global _policy
    if _policy is None:
        _policy = entitlement_policy_from_settings()
    return _policy
