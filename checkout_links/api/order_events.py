"""
Order lifecycle webhooks from the external order system.

POST /api/v1/orders/{order_id}/processed   checkout completed; store the link reference
POST /api/v1/orders/{order_id}/events      thank-you / payment / status events; count once

When ORDER_WEBHOOK_SECRET is set, the raw body must be signed:
X-Order-Signature = hex(HMAC-SHA256(body, secret)).
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Request, Response
from pydantic import BaseModel

from config.settings import settings
from checkout_links.api.deps import get_attribution
from checkout_links.db.tables import MAX_ORDER_ID_LENGTH
from checkout_links.services.attribution import ConversionAttribution
from checkout_links.services.secret_key import get_secret_key
from checkout_links.services.visitor_session import LINK_COOKIE, SESSION_COOKIE, read_link_cookie

router = APIRouter(prefix="/api/v1/orders", tags=["Order Events"])
logger = logging.getLogger(__name__)

OrderEvent = Literal[
    "thankyou",
    "payment_complete",
    "status_completed",
    "status_processing",
    "status_on_hold",
    "status_pending",
]


class OrderProcessedRequest(BaseModel):
    session_id: Optional[str] = None
    link_cookie: Optional[str] = None  # raw signed jtc_link_id value


class OrderEventRequest(OrderProcessedRequest):
    event: OrderEvent


def verify_order_signature(payload: bytes, signature: str, secret: str) -> bool:
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


async def _verify_signature(
    request: Request,
    x_order_signature: str = Header(None),
) -> None:
    secret = settings.ORDER_WEBHOOK_SECRET
    if not secret:
        return
    body = await request.body()
    if not x_order_signature or not verify_order_signature(body, x_order_signature, secret):
        logger.warning("Rejected order event with bad signature: %s", request.url.path)
        raise HTTPException(401, "Invalid signature")


def _shopper_channels(
    req: OrderProcessedRequest,
    request: Request,
    secret: str,
) -> tuple[Optional[str], Optional[int]]:
    session_id = req.session_id or request.cookies.get(SESSION_COOKIE)
    cookie_link_id = read_link_cookie(req.link_cookie or request.cookies.get(LINK_COOKIE), secret)
    return session_id, cookie_link_id


@router.post("/{order_id}/processed", dependencies=[Depends(_verify_signature)])
async def order_processed(
    req: OrderProcessedRequest,
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=MAX_ORDER_ID_LENGTH),
    attribution: ConversionAttribution = Depends(get_attribution),
    secret: str = Depends(get_secret_key),
):
    """Remember which link (if any) brought this order in."""
    session_id, cookie_link_id = _shopper_channels(req, request, secret)
    link_id = await attribution.remember_order_link(order_id, session_id, cookie_link_id)
    return {"order_id": order_id, "link_id": link_id}


@router.post("/{order_id}/events", dependencies=[Depends(_verify_signature)])
async def order_event(
    req: OrderEventRequest,
    request: Request,
    response: Response,
    order_id: str = Path(..., min_length=1, max_length=MAX_ORDER_ID_LENGTH),
    attribution: ConversionAttribution = Depends(get_attribution),
    secret: str = Depends(get_secret_key),
):
    """Count the order as a conversion for its link, at most once per order."""
    session_id, cookie_link_id = _shopper_channels(req, request, secret)
    result = await attribution.attribute_conversion(order_id, req.event, session_id, cookie_link_id)
    if result.counted:
        response.delete_cookie(
            LINK_COOKIE, domain=settings.COOKIE_DOMAIN,
            secure=settings.COOKIE_SECURE, httponly=True,
        )
    return {"order_id": order_id, "status": result.status, "link_id": result.link_id}
