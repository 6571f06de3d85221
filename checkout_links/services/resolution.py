"""
Resolution engine: turns a visited token into a populated cart.

Flow for GET /jump-to-checkout/{token}:
  1. Look up the token           → InvalidToken if unknown
  2. Check status                → LinkDisabled if not active (wins over expiry)
  3. Check expiry                → LinkExpired
  4. Count the visit             (failure logged, never blocks the shopper)
  5. Remember the link id        (session slot; the route sets the cookie)
  6. Load the selection          (stored row, or decoded legacy token)
  7. Empty the shopper's cart
  8. Add each entry that is available
  9. Nothing added               → NoProductsAvailable
     Something skipped           → notice on the cart, partial outcome
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from checkout_links.db.link_store import LinkStore, row_to_link
from checkout_links.errors import (
    InvalidToken, LinkDisabled, LinkExpired, NoProductsAvailable, SkippedItem,
    StorefrontError,
)
from checkout_links.models.link import Link, LinkStatus, SelectionItem
from checkout_links.services.expiry import ExpiryPolicy
from checkout_links.services.storefront import Storefront
from checkout_links.services.token_codec import LegacyToken, classify_token, decode_legacy_token
from checkout_links.services.visitor_session import LINK_SLOT, SessionStore

logger = logging.getLogger(__name__)

PARTIAL_NOTICE = "Some products could not be added to your cart because they are out of stock: {}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ResolutionResult:
    link_id: int
    added: int
    skipped: list[SkippedItem] = field(default_factory=list)
    redirect_url: str = ""

    @property
    def outcome(self) -> str:
        return "partial" if self.skipped else "full"


class ResolutionEngine:

    def __init__(
        self,
        session: AsyncSession,
        storefront: Storefront,
        sessions: SessionStore,
        expiry: ExpiryPolicy,
        secret: str,
        clock: Callable[[], datetime] = _now,
    ):
        self.session = session
        self.store = LinkStore(session)
        self.storefront = storefront
        self.sessions = sessions
        self.expiry = expiry
        self.secret = secret
        self.clock = clock

    async def resolve(self, token: str, shopper_session: str) -> ResolutionResult:
        row = await self.store.get_by_token(token)
        if row is None:
            raise InvalidToken()
        link = row_to_link(row)

        if link.status != LinkStatus.ACTIVE:
            raise LinkDisabled()
        if self.expiry.is_expired(link, self.clock()):
            raise LinkExpired()

        await self._count_visit(link.id)

        self.sessions.set(shopper_session, LINK_SLOT, link.id)

        selection = self._selection_for(token, link)

        await self.storefront.empty_cart(shopper_session)

        added = 0
        skipped: list[SkippedItem] = []
        for entry in selection:
            miss = await self._add_entry(shopper_session, entry)
            if miss is None:
                added += 1
            else:
                skipped.append(miss)

        if added == 0:
            logger.info("Link %s resolved with nothing available (%d skipped)", link.id, len(skipped))
            raise NoProductsAvailable(skipped, link_id=link.id)

        if skipped:
            labels = ", ".join(s.label() for s in skipped)
            await self.storefront.add_notice(shopper_session, PARTIAL_NOTICE.format(labels))

        result = ResolutionResult(
            link_id=link.id,
            added=added,
            skipped=skipped,
            redirect_url=self.storefront.checkout_url(),
        )
        logger.info(
            "Link %s resolved: %s (%d added, %d skipped)",
            link.id, result.outcome, added, len(skipped),
        )
        return result

    async def _count_visit(self, link_id: int) -> None:
        try:
            await self.store.increment_visits(link_id)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Visit counter update failed for link %s", link_id)

    def _selection_for(self, token: str, link: Link) -> list[SelectionItem]:
        if isinstance(classify_token(token, link.token_format), LegacyToken):
            payload = decode_legacy_token(
                token,
                self.secret,
                now=self.clock().timestamp(),
                allow_expired=self.expiry.accept_expired_legacy,
            )
            return payload.selection
        return list(link.selection)

    async def _add_entry(self, shopper_session: str, entry: SelectionItem) -> Optional[SkippedItem]:
        """Add one selection entry; returns the SkippedItem when it was not added."""
        lookup_id = entry.variant_id or entry.catalog_item_id
        try:
            item = await self.storefront.get_item(lookup_id)
        except StorefrontError:
            return SkippedItem(entry.catalog_item_id, f"#{lookup_id}", "rejected")

        if item is None:
            return SkippedItem(entry.catalog_item_id, f"#{lookup_id}", "not_found")
        if not item.in_stock:
            return SkippedItem(entry.catalog_item_id, item.name, "out_of_stock")
        if not item.has_quantity(entry.quantity):
            return SkippedItem(
                entry.catalog_item_id, item.name, "insufficient_stock",
                available=item.stock_quantity or 0,
            )

        confirmed = await self.storefront.add_to_cart(
            shopper_session,
            entry.catalog_item_id,
            entry.quantity,
            variant_id=entry.variant_id,
            variant_attributes=entry.variant_attributes,
        )
        if not confirmed:
            return SkippedItem(entry.catalog_item_id, item.name, "rejected")
        return None
