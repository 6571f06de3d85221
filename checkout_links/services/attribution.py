"""
Conversion attribution: ties a completed order to the link that started it.

Several order-lifecycle events may fire for the same order (thank-you page,
payment complete, status transitions). Exactly one of them counts the
conversion: the order_attributions row is claimed with a conditional UPDATE
and only the caller that flips conversion_counted increments the link.

Link id fallback chain: stored order row → session slot → signed cookie.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from checkout_links.db.link_store import LinkStore
from checkout_links.db.tables import OrderAttributionRow
from checkout_links.errors import StorageFailure
from checkout_links.services.visitor_session import LINK_SLOT, SessionStore

logger = logging.getLogger(__name__)

ORDER_EVENTS = frozenset({
    "thankyou",
    "payment_complete",
    "status_completed",
    "status_processing",
    "status_on_hold",
    "status_pending",
})

COUNTED = "counted"
ALREADY_COUNTED = "already_counted"
UNATTRIBUTED = "unattributed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AttributionResult:
    status: str
    link_id: Optional[int] = None

    @property
    def counted(self) -> bool:
        return self.status == COUNTED


class ConversionAttribution:

    def __init__(
        self,
        session: AsyncSession,
        sessions: SessionStore,
        clock: Callable[[], datetime] = _now,
    ):
        self.session = session
        self.store = LinkStore(session)
        self.sessions = sessions
        self.clock = clock

    async def remember_order_link(
        self,
        order_id: str,
        session_id: Optional[str] = None,
        cookie_link_id: Optional[int] = None,
    ) -> Optional[int]:
        """Store the order → link reference at checkout, without counting.

        Returns the link id that was recorded, or None when the shopper did
        not arrive through a link.
        """
        link_id = self.sessions.get(session_id, LINK_SLOT) or cookie_link_id
        if not link_id:
            return None
        try:
            await self._ensure_order_row(order_id, int(link_id), event="processed")
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Could not store link reference for order %s", order_id)
            raise StorageFailure("Error saving order attribution.") from exc
        return int(link_id)

    async def attribute_conversion(
        self,
        order_id: str,
        event: str,
        session_id: Optional[str] = None,
        cookie_link_id: Optional[int] = None,
    ) -> AttributionResult:
        if event not in ORDER_EVENTS:
            logger.warning("Ignoring unknown order event %r for order %s", event, order_id)
            return AttributionResult(UNATTRIBUTED)

        existing = await self._get_order_row(order_id)
        link_id = (
            (existing.link_id if existing else None)
            or self.sessions.get(session_id, LINK_SLOT)
            or cookie_link_id
        )
        if not link_id:
            logger.debug("Order %s has no link attribution (%s)", order_id, event)
            return AttributionResult(UNATTRIBUTED)
        link_id = int(link_id)

        try:
            if existing is None:
                await self._ensure_order_row(order_id, link_id, event=event)
            claimed = await self._claim(order_id, event)
            if claimed:
                if not await self.store.increment_conversions(link_id):
                    logger.warning("Order %s attributed to missing link %s", order_id, link_id)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Conversion tracking failed for order %s", order_id)
            raise StorageFailure("Error recording conversion.") from exc

        if not claimed:
            logger.debug("Order %s already counted (event=%s)", order_id, event)
            return AttributionResult(ALREADY_COUNTED, link_id)

        logger.info("Conversion counted: order=%s link=%s event=%s", order_id, link_id, event)
        self._clear_session(session_id)
        return AttributionResult(COUNTED, link_id)

    async def _get_order_row(self, order_id: str) -> Optional[OrderAttributionRow]:
        result = await self.session.execute(
            select(OrderAttributionRow).where(OrderAttributionRow.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def _ensure_order_row(self, order_id: str, link_id: int, event: str) -> None:
        """Insert the order row if missing; an existing reference is kept."""
        if await self._get_order_row(order_id) is not None:
            return
        self.session.add(OrderAttributionRow(
            order_id=order_id,
            link_id=link_id,
            conversion_counted=False,
            last_event=event,
            attributed_at=self.clock(),
        ))
        try:
            await self.session.flush()
        except IntegrityError:
            # Concurrent event inserted the row first
            await self.session.rollback()
            logger.debug("Order row for %s created concurrently", order_id)

    async def _claim(self, order_id: str, event: str) -> bool:
        result = await self.session.execute(
            update(OrderAttributionRow)
            .where(
                OrderAttributionRow.order_id == order_id,
                OrderAttributionRow.conversion_counted.is_(False),
            )
            .values(conversion_counted=True, counted_at=self.clock(), last_event=event)
        )
        return result.rowcount == 1

    def _clear_session(self, session_id: Optional[str]) -> None:
        try:
            self.sessions.clear(session_id, LINK_SLOT)
        except Exception:
            logger.exception("Could not clear session link slot")
