"""Link data models: selection entries, statuses, token formats."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class LinkStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TokenFormat(str, Enum):
    SHORT = "short"    # random id, selection stored in the link row
    LEGACY = "legacy"  # self-describing signed token


class SelectionItem(BaseModel):
    """One catalog item (and quantity) carried by a link."""
    catalog_item_id: int = Field(..., gt=0)
    quantity: int = Field(1, gt=0)
    variant_id: int = Field(0, ge=0)  # 0 = no variant
    variant_attributes: dict[str, str] = Field(default_factory=dict)

    def to_wire(self) -> dict:
        """Serialize with the storefront's field names (also used by legacy tokens)."""
        return {
            "product_id": self.catalog_item_id,
            "quantity": self.quantity,
            "variation_id": self.variant_id,
            "variation": dict(self.variant_attributes),
        }

    @classmethod
    def from_wire(cls, data: dict) -> "SelectionItem":
        """Parse a stored/legacy entry. Accepts both field name styles."""
        item_id = data.get("catalog_item_id", data.get("product_id"))
        variant = data.get("variant_attributes", data.get("variation")) or {}
        return cls(
            catalog_item_id=int(item_id),
            quantity=int(data.get("quantity") or 1),
            variant_id=int(data.get("variant_id", data.get("variation_id")) or 0),
            variant_attributes={str(k): str(v) for k, v in dict(variant).items()},
        )


class Link(BaseModel):
    """A persisted checkout link, as exposed to the admin surface."""
    id: int
    name: str
    token: str
    token_format: Optional[TokenFormat] = None
    url: str
    selection: list[SelectionItem] = []
    expiry_hours: int = 0
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    visits: int = 0
    conversions: int = 0
    status: LinkStatus = LinkStatus.ACTIVE


class IssuedLink(BaseModel):
    id: int
    url: str
    token: str


class LinkStatistics(BaseModel):
    total_links: int = 0
    active_links: int = 0
    total_visits: int = 0
    total_conversions: int = 0

    @property
    def conversion_rate(self) -> float:
        if not self.total_visits:
            return 0.0
        return round(self.total_conversions / self.total_visits * 100, 2)
