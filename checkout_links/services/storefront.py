"""
Storefront client: the external shop's catalog and cart.

Resolution only needs five things from the shop: look up an item's stock,
empty a shopper's cart, add an item, attach a notice, and know the checkout
URL. Two implementations:

- HttpStorefront: the shop's REST API over httpx (production)
- InMemoryStorefront: dict-backed catalog + carts (dev and tests)

Calls are never retried here; timeouts come from STOREFRONT_TIMEOUT_SECONDS.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from config.settings import settings
from checkout_links.errors import StorefrontError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogItem:
    item_id: int
    name: str
    in_stock: bool = True
    manages_stock: bool = False
    stock_quantity: Optional[int] = None

    def has_quantity(self, quantity: int) -> bool:
        if not self.manages_stock:
            return True
        return (self.stock_quantity or 0) >= quantity


@dataclass
class CartLine:
    catalog_item_id: int
    quantity: int
    variant_id: int = 0
    variant_attributes: dict[str, str] = field(default_factory=dict)


class Storefront(ABC):

    @abstractmethod
    async def get_item(self, item_id: int) -> Optional[CatalogItem]:
        """Catalog item (or variant) by id, None if it does not exist."""

    @abstractmethod
    async def empty_cart(self, shopper_session: str) -> None:
        ...

    @abstractmethod
    async def add_to_cart(
        self,
        shopper_session: str,
        catalog_item_id: int,
        quantity: int,
        variant_id: int = 0,
        variant_attributes: Optional[dict[str, str]] = None,
    ) -> bool:
        """True only when the shop confirms the line was added."""

    @abstractmethod
    async def add_notice(self, shopper_session: str, message: str, level: str = "notice") -> None:
        ...

    def checkout_url(self) -> str:
        return settings.CHECKOUT_URL


# ── In-memory (dev/tests) ────────────────────────────────────────────────────

class InMemoryStorefront(Storefront):
    def __init__(self, items: Optional[list[CatalogItem]] = None):
        self.catalog: dict[int, CatalogItem] = {i.item_id: i for i in items or []}
        self.carts: dict[str, list[CartLine]] = {}
        self.notices: dict[str, list[tuple[str, str]]] = {}
        self.rejected_item_ids: set[int] = set()  # simulate the shop refusing an add

    def put_item(self, item: CatalogItem) -> None:
        self.catalog[item.item_id] = item

    async def get_item(self, item_id: int) -> Optional[CatalogItem]:
        return self.catalog.get(item_id)

    async def empty_cart(self, shopper_session: str) -> None:
        self.carts[shopper_session] = []

    async def add_to_cart(
        self,
        shopper_session: str,
        catalog_item_id: int,
        quantity: int,
        variant_id: int = 0,
        variant_attributes: Optional[dict[str, str]] = None,
    ) -> bool:
        if catalog_item_id in self.rejected_item_ids:
            return False
        if (variant_id or catalog_item_id) not in self.catalog:
            return False
        self.carts.setdefault(shopper_session, []).append(CartLine(
            catalog_item_id=catalog_item_id,
            quantity=quantity,
            variant_id=variant_id,
            variant_attributes=dict(variant_attributes or {}),
        ))
        return True

    async def add_notice(self, shopper_session: str, message: str, level: str = "notice") -> None:
        self.notices.setdefault(shopper_session, []).append((level, message))

    def cart(self, shopper_session: str) -> list[CartLine]:
        return list(self.carts.get(shopper_session, []))


# ── HTTP (production) ────────────────────────────────────────────────────────

class HttpStorefront(Storefront):
    """Talks to the shop's REST API.

    GET    /catalog/items/{id}
    DELETE /carts/{session}/items
    POST   /carts/{session}/items      {product_id, quantity, variation_id, variation}
    POST   /carts/{session}/notices    {message, type}
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"User-Agent": "checkout-links/1.0"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_item(self, item_id: int) -> Optional[CatalogItem]:
        try:
            resp = await self._client.get(f"/catalog/items/{item_id}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("Catalog lookup failed for item %s: %s", item_id, exc)
            raise StorefrontError() from exc

        return CatalogItem(
            item_id=int(data.get("id", item_id)),
            name=str(data.get("name") or f"#{item_id}"),
            in_stock=bool(data.get("in_stock", True)),
            manages_stock=bool(data.get("manage_stock", False)),
            stock_quantity=data.get("stock_quantity"),
        )

    async def empty_cart(self, shopper_session: str) -> None:
        try:
            resp = await self._client.delete(f"/carts/{shopper_session}/items")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Emptying cart failed: %s", exc)
            raise StorefrontError() from exc

    async def add_to_cart(
        self,
        shopper_session: str,
        catalog_item_id: int,
        quantity: int,
        variant_id: int = 0,
        variant_attributes: Optional[dict[str, str]] = None,
    ) -> bool:
        try:
            resp = await self._client.post(
                f"/carts/{shopper_session}/items",
                json={
                    "product_id": catalog_item_id,
                    "quantity": quantity,
                    "variation_id": variant_id,
                    "variation": variant_attributes or {},
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Add to cart failed for item %s: %s", catalog_item_id, exc)
            return False
        if resp.status_code >= 400:
            logger.info("Shop refused item %s (HTTP %d)", catalog_item_id, resp.status_code)
            return False
        try:
            return bool(resp.json().get("cart_item_key"))
        except ValueError:
            return False

    async def add_notice(self, shopper_session: str, message: str, level: str = "notice") -> None:
        try:
            resp = await self._client.post(
                f"/carts/{shopper_session}/notices",
                json={"message": message, "type": level},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            # A lost notice never blocks checkout
            logger.warning("Could not attach cart notice: %s", exc)


_storefront: Storefront | None = None


def storefront_from_settings() -> Storefront:
    if settings.STOREFRONT_API_BASE:
        return HttpStorefront(
            settings.STOREFRONT_API_BASE,
            api_key=settings.STOREFRONT_API_KEY,
            timeout=settings.STOREFRONT_TIMEOUT_SECONDS,
        )
    logger.warning("STOREFRONT_API_BASE not set, using in-memory storefront")
    return InMemoryStorefront()


def get_storefront() -> Storefront:
    """FastAPI dependency: one storefront client per process."""
    global _storefront
    if _storefront is None:
        _storefront = storefront_from_settings()
    return _storefront


async def close_storefront() -> None:
    global _storefront
    if isinstance(_storefront, HttpStorefront):
        await _storefront.aclose()
    _storefront = None
