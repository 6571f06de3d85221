"""SQLAlchemy ORM models for checkout links and conversion attribution."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Enum as SAEnum, Index, Integer, String, Text,
)
from sqlalchemy.orm import DeclarativeBase

from checkout_links.models.link import LinkStatus, TokenFormat


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class LinkRow(Base):
    """One shareable checkout link."""
    __tablename__ = "checkout_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    token = Column(String(2048), nullable=False)
    # NULL for rows imported from before the format tag existed
    token_format = Column(
        SAEnum(TokenFormat, native_enum=False, length=16, values_callable=_enum_values),
        nullable=True,
    )
    url = Column(Text, nullable=False)
    selection = Column(Text, nullable=False)  # JSON list of storefront wire entries
    expiry_hours = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    visits = Column(Integer, nullable=False, default=0)
    conversions = Column(Integer, nullable=False, default=0)
    status = Column(
        SAEnum(LinkStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=LinkStatus.ACTIVE,
        server_default=LinkStatus.ACTIVE.value,
    )

    __table_args__ = (
        # Unique token index is the collision backstop for short tokens
        Index("ix_checkout_links_token", "token", unique=True),
        Index("ix_checkout_links_status", "status"),
        Index("ix_checkout_links_created_at", "created_at"),
        Index("ix_checkout_links_name", "name"),
    )


MAX_ORDER_ID_LENGTH = 100


class OrderAttributionRow(Base):
    """Order → link reference and conversion idempotency marker.

    The primary key on order_id makes the conversion claim a store-level
    conditional update: only one trigger can flip conversion_counted.
    """
    __tablename__ = "order_attributions"

    order_id = Column(String(MAX_ORDER_ID_LENGTH), primary_key=True)
    link_id = Column(Integer, nullable=False, index=True)
    conversion_counted = Column(Boolean, nullable=False, default=False)
    last_event = Column(String(50), nullable=True)
    attributed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    counted_at = Column(DateTime(timezone=True), nullable=True)


class AppSecretRow(Base):
    """Process-wide secrets generated once and persisted (never exposed)."""
    __tablename__ = "app_secrets"

    name = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
