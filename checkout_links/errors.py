"""Error taxonomy for link issuance, resolution and attribution.

Every error carries a machine-readable ``code`` and the HTTP status it maps
to. The API layer renders them: the visitor route as an HTML page, the admin
and order routes as the ``{"error": code, "message": ...}`` envelope.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SkippedItem:
    """A selection entry that could not be added to the cart."""
    catalog_item_id: int
    name: str
    reason: str             # not_found, out_of_stock, insufficient_stock, rejected
    available: int | None = None

    def label(self) -> str:
        if self.reason == "insufficient_stock" and self.available is not None:
            return f"{self.name} (only {self.available} available)"
        return self.name

    def to_dict(self) -> dict:
        return {
            "catalog_item_id": self.catalog_item_id,
            "name": self.name,
            "reason": self.reason,
            "available": self.available,
        }


class CheckoutLinkError(Exception):
    """Base exception for all checkout link failures."""

    code = "checkout_link_error"
    http_status = 500
    default_message = "Something went wrong with this checkout link."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidToken(CheckoutLinkError):
    """Malformed token, forged signature, or token not found in the store."""
    code = "invalid_token"
    http_status = 403
    default_message = "Invalid checkout link."


class LinkDisabled(CheckoutLinkError):
    code = "link_disabled"
    http_status = 403
    default_message = "This checkout link has been disabled."


class LinkExpired(CheckoutLinkError):
    code = "link_expired"
    http_status = 403
    default_message = "This checkout link has expired."


class NoProductsAvailable(CheckoutLinkError):
    """Every selection entry failed availability. Rendered with a 200."""
    code = "no_products_available"
    http_status = 200
    default_message = "Sorry, the products in this link are not available."

    def __init__(
        self,
        skipped: list[SkippedItem],
        message: str | None = None,
        link_id: int | None = None,
    ):
        super().__init__(message)
        self.skipped = list(skipped)
        self.link_id = link_id  # visit was still counted and attributed

    def to_response(self) -> dict:
        return {
            **super().to_response(),
            "skipped": [s.to_dict() for s in self.skipped],
        }


class EntitlementExceeded(CheckoutLinkError):
    """Creation or activation blocked by plan limits."""
    code = "entitlement_exceeded"
    http_status = 403
    default_message = "Your plan does not allow this operation."

    def __init__(self, capability: str, limit: int | None = None, message: str | None = None):
        super().__init__(message)
        self.capability = capability
        self.limit = limit

    def to_response(self) -> dict:
        return {
            **super().to_response(),
            "capability": self.capability,
            "limit": self.limit,
        }


class StorageFailure(CheckoutLinkError):
    code = "storage_failure"
    http_status = 500
    default_message = "Could not save the checkout link. Please try again."


class LinkNotFound(CheckoutLinkError):
    code = "link_not_found"
    http_status = 404
    default_message = "Link not found."


class InvalidSelection(CheckoutLinkError):
    code = "invalid_selection"
    http_status = 400
    default_message = "No products selected."


class StorefrontError(CheckoutLinkError):
    """The external shop (catalog/cart API) failed or is unreachable."""
    code = "storefront_unavailable"
    http_status = 502
    default_message = "The shop is temporarily unavailable. Please try again."
