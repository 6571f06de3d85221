"""Link store: the only code that reads or writes the checkout_links table."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from checkout_links.db.tables import LinkRow
from checkout_links.errors import StorageFailure
from checkout_links.models.link import (
    Link, LinkStatistics, LinkStatus, SelectionItem, TokenFormat,
)

logger = logging.getLogger(__name__)

ALLOWED_ORDER_BY = ("id", "name", "created_at", "visits", "conversions", "status", "expires_at")


class DuplicateToken(Exception):
    """Insert rejected by the unique token index."""


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def decode_selection(raw: str | None) -> list[SelectionItem]:
    if not raw:
        return []
    try:
        entries = json.loads(raw)
    except ValueError:
        logger.error("Stored selection is not valid JSON")
        return []
    items = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(SelectionItem.from_wire(entry))
        except (TypeError, ValueError):
            logger.warning("Skipping malformed stored selection entry: %r", entry)
    return items


def encode_selection(selection: list[SelectionItem]) -> str:
    return json.dumps([item.to_wire() for item in selection])


def row_to_link(row: LinkRow) -> Link:
    return Link(
        id=row.id,
        name=row.name,
        token=row.token,
        token_format=row.token_format,
        url=row.url,
        selection=decode_selection(row.selection),
        expiry_hours=row.expiry_hours or 0,
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
        visits=row.visits or 0,
        conversions=row.conversions or 0,
        status=row.status,
    )


class LinkStore:
    """Async link persistence backed by SQLAlchemy.

    Methods flush but never commit; the calling service owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def token_exists(self, token: str) -> bool:
        result = await self.session.execute(
            select(func.count(LinkRow.id)).where(LinkRow.token == token)
        )
        return result.scalar_one() > 0

    async def insert_link(
        self,
        name: str,
        token: str,
        token_format: TokenFormat,
        url: str,
        selection: list[SelectionItem],
        expiry_hours: int = 0,
        expires_at: Optional[datetime] = None,
    ) -> Link:
        row = LinkRow(
            name=name,
            token=token,
            token_format=token_format,
            url=url,
            selection=encode_selection(selection),
            expiry_hours=expiry_hours,
            expires_at=expires_at,
            status=LinkStatus.ACTIVE,
            visits=0,
            conversions=0,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise DuplicateToken(token) from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("Link insert failed")
            raise StorageFailure() from exc
        return row_to_link(row)

    async def get_by_token(self, token: str) -> Optional[LinkRow]:
        result = await self.session.execute(select(LinkRow).where(LinkRow.token == token))
        return result.scalar_one_or_none()

    async def get_by_id(self, link_id: int) -> Optional[LinkRow]:
        result = await self.session.execute(select(LinkRow).where(LinkRow.id == link_id))
        return result.scalar_one_or_none()

    async def list_links(
        self,
        status: LinkStatus | None = None,
        order_by: str = "created_at",
        order: str = "DESC",
        limit: int = 50,
        offset: int = 0,
    ) -> list[Link]:
        stmt = select(LinkRow)
        if status:
            stmt = stmt.where(LinkRow.status == status)

        column = getattr(LinkRow, order_by if order_by in ALLOWED_ORDER_BY else "created_at")
        direction = column.asc() if str(order).upper() == "ASC" else column.desc()
        # id as tie-breaker keeps pagination stable for equal sort keys
        tiebreak = LinkRow.id.asc() if str(order).upper() == "ASC" else LinkRow.id.desc()
        stmt = stmt.order_by(direction, tiebreak).offset(offset).limit(limit)

        result = await self.session.execute(stmt)
        return [row_to_link(r) for r in result.scalars().all()]

    async def count(self, status: LinkStatus | None = None) -> int:
        stmt = select(func.count(LinkRow.id))
        if status:
            stmt = stmt.where(LinkRow.status == status)
        return (await self.session.execute(stmt)).scalar_one()

    async def count_active(self) -> int:
        return await self.count(LinkStatus.ACTIVE)

    async def increment_visits(self, link_id: int) -> bool:
        """Single atomic ``visits = visits + 1``."""
        result = await self.session.execute(
            update(LinkRow).where(LinkRow.id == link_id).values(visits=LinkRow.visits + 1)
        )
        return result.rowcount == 1

    async def increment_conversions(self, link_id: int) -> bool:
        result = await self.session.execute(
            update(LinkRow)
            .where(LinkRow.id == link_id)
            .values(conversions=LinkRow.conversions + 1)
        )
        return result.rowcount == 1

    async def update_status(self, link_id: int, status: LinkStatus) -> bool:
        result = await self.session.execute(
            update(LinkRow).where(LinkRow.id == link_id).values(status=status)
        )
        return result.rowcount == 1

    async def delete_link(self, link_id: int) -> bool:
        result = await self.session.execute(delete(LinkRow).where(LinkRow.id == link_id))
        return result.rowcount == 1

    async def get_statistics(self) -> LinkStatistics:
        row = (await self.session.execute(
            select(
                func.count(LinkRow.id),
                func.coalesce(func.sum(case((LinkRow.status == LinkStatus.ACTIVE, 1), else_=0)), 0),
                func.coalesce(func.sum(LinkRow.visits), 0),
                func.coalesce(func.sum(LinkRow.conversions), 0),
            )
        )).one()
        return LinkStatistics(
            total_links=int(row[0] or 0),
            active_links=int(row[1] or 0),
            total_visits=int(row[2] or 0),
            total_conversions=int(row[3] or 0),
        )
