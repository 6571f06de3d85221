"""
Link lifecycle: issuance, activation/deactivation, deletion, listing.

States: active (initial) and inactive. An operator toggle flips between them;
moving into active is refused when the plan's active-link limit is reached.
Deletion is a hard row removal, not a state.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from checkout_links.db.link_store import DuplicateToken, LinkStore, row_to_link
from checkout_links.errors import (
    EntitlementExceeded, InvalidSelection, LinkNotFound, StorageFailure,
)
from checkout_links.models.link import (
    IssuedLink, Link, LinkStatistics, LinkStatus, SelectionItem, TokenFormat,
)
from checkout_links.services.entitlements import (
    UPGRADE_CAPABILITY_ITEMS, UPGRADE_CAPABILITY_LINKS, EntitlementPolicy,
)
from checkout_links.services.expiry import ExpiryPolicy
from checkout_links.services.token_codec import generate_short_token

logger = logging.getLogger(__name__)


def build_link_url(token: str, base_url: str | None = None) -> str:
    base = (settings.API_BASE_URL if base_url is None else base_url).rstrip("/")
    return f"{base}/{settings.LINK_PATH_PREFIX}/{token}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LinkLifecycle:
    """Operator-facing link operations."""

    def __init__(
        self,
        session: AsyncSession,
        entitlements: EntitlementPolicy,
        expiry: ExpiryPolicy,
        clock: Callable[[], datetime] = _now,
        min_items: Optional[int] = None,
    ):
        self.session = session
        self.store = LinkStore(session)
        self.entitlements = entitlements
        self.expiry = expiry
        self.clock = clock
        self.min_items = settings.MIN_ITEMS_PER_LINK if min_items is None else min_items

    async def issue_link(
        self,
        name: str,
        selection: list[SelectionItem],
        expiry_hint_hours: int = 0,
    ) -> IssuedLink:
        """Create an active link for a selection and return its id, URL and token."""
        name = (name or "").strip()
        if not name:
            raise InvalidSelection("Please enter a link name.")
        if len(selection) < max(self.min_items, 1):
            raise InvalidSelection("No products selected.")
        if expiry_hint_hours < 0:
            raise InvalidSelection("Expiry must be zero or a positive number of hours.")

        ent = self.entitlements.current()
        active = await self.store.count_active()
        if not self.entitlements.can_activate_link(active):
            raise EntitlementExceeded(
                UPGRADE_CAPABILITY_LINKS,
                ent.max_active_links,
                f"You have reached the limit of {ent.max_active_links} active links.",
            )
        if not self.entitlements.allows_selection_size(len(selection)):
            raise EntitlementExceeded(
                UPGRADE_CAPABILITY_ITEMS,
                ent.max_items_per_link,
                f"Your plan allows only {ent.max_items_per_link} product(s) per link.",
            )

        expiry_hours, expires_at = self.expiry.expiry_for(expiry_hint_hours, self.clock())

        link = None
        for attempt in range(2):
            token = await generate_short_token(self.store.token_exists)
            try:
                link = await self.store.insert_link(
                    name=name,
                    token=token,
                    token_format=TokenFormat.SHORT,
                    url=build_link_url(token),
                    selection=selection,
                    expiry_hours=expiry_hours,
                    expires_at=expires_at,
                )
                break
            except DuplicateToken:
                logger.warning("Token collision on insert (attempt %d)", attempt + 1)
        if link is None:
            raise StorageFailure("Error generating link.")

        await self._commit()
        logger.info("Issued link id=%s name=%r items=%d", link.id, name, len(selection))
        return IssuedLink(id=link.id, url=link.url, token=link.token)

    async def toggle_status(self, link_id: int) -> LinkStatus:
        row = await self.store.get_by_id(link_id)
        if row is None:
            raise LinkNotFound()
        target = LinkStatus.INACTIVE if row.status == LinkStatus.ACTIVE else LinkStatus.ACTIVE
        return await self.set_status(link_id, target)

    async def set_status(self, link_id: int, status: LinkStatus) -> LinkStatus:
        row = await self.store.get_by_id(link_id)
        if row is None:
            raise LinkNotFound()
        if row.status == status:
            return status

        if status == LinkStatus.ACTIVE:
            active = await self.store.count_active()
            if not self.entitlements.can_activate_link(active):
                limit = self.entitlements.current().max_active_links
                raise EntitlementExceeded(
                    UPGRADE_CAPABILITY_LINKS,
                    limit,
                    f"You cannot activate more links. The limit is {limit} active links.",
                )

        try:
            await self.store.update_status(link_id, status)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Status update failed for link %s", link_id)
            raise StorageFailure("Error updating status.") from exc
        await self._commit()
        logger.info("Link %s is now %s", link_id, status.value)
        return status

    async def delete_link(self, link_id: int) -> None:
        try:
            deleted = await self.store.delete_link(link_id)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Delete failed for link %s", link_id)
            raise StorageFailure("Error deleting link.") from exc
        if not deleted:
            raise LinkNotFound()
        await self._commit()
        logger.info("Deleted link %s", link_id)

    async def get_link(self, link_id: int) -> Link:
        row = await self.store.get_by_id(link_id)
        if row is None:
            raise LinkNotFound()
        return row_to_link(row)

    async def list_links(
        self,
        status: LinkStatus | None = None,
        order_by: str = "created_at",
        order: str = "DESC",
        limit: int = 50,
        offset: int = 0,
    ) -> list[Link]:
        return await self.store.list_links(status, order_by, order, limit, offset)

    def is_expired(self, link: Link) -> bool:
        return self.expiry.is_expired(link, self.clock())

    async def get_statistics(self) -> LinkStatistics:
        return await self.store.get_statistics()

    async def entitlement_summary(self) -> dict:
        ent = self.entitlements.current()
        active = await self.store.count_active()
        return {
            **ent.to_dict(),
            "active_links": active,
            "can_create_link": self.entitlements.can_activate_link(active),
        }

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Commit failed")
            raise StorageFailure() from exc
