"""
Admin endpoints for checkout links.

Consumed by the external admin surface. All routes require X-Admin-Key.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from checkout_links.api.deps import get_lifecycle, verify_admin
from checkout_links.models.link import IssuedLink, Link, LinkStatus, SelectionItem
from checkout_links.services.lifecycle import LinkLifecycle

router = APIRouter(
    prefix="/api/v1/admin/links",
    tags=["Checkout Links Admin"],
    dependencies=[Depends(verify_admin)],
)
entitlements_router = APIRouter(
    prefix="/api/v1/admin",
    tags=["Checkout Links Admin"],
    dependencies=[Depends(verify_admin)],
)
logger = logging.getLogger(__name__)


class IssueLinkRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    selection: list[SelectionItem] = Field(default_factory=list)
    expiry_hours: int = Field(0, ge=0)


class StatusUpdateRequest(BaseModel):
    status: LinkStatus


class LinkResponse(BaseModel):
    id: int
    name: str
    token: str
    url: str
    selection: list[SelectionItem]
    status: LinkStatus
    visits: int
    conversions: int
    conversion_rate: float
    expiry_hours: int
    expires_at: Optional[datetime] = None
    is_expired: bool
    created_at: Optional[datetime] = None


class StatusResponse(BaseModel):
    id: int
    status: LinkStatus


class StatisticsResponse(BaseModel):
    total_links: int
    active_links: int
    total_visits: int
    total_conversions: int
    conversion_rate: float


def _to_response(link: Link, lifecycle: LinkLifecycle) -> LinkResponse:
    rate = round(link.conversions / link.visits * 100, 2) if link.visits else 0.0
    return LinkResponse(
        id=link.id,
        name=link.name,
        token=link.token,
        url=link.url,
        selection=link.selection,
        status=link.status,
        visits=link.visits,
        conversions=link.conversions,
        conversion_rate=rate,
        expiry_hours=link.expiry_hours,
        expires_at=link.expires_at,
        is_expired=lifecycle.is_expired(link),
        created_at=link.created_at,
    )


@router.post("", response_model=IssuedLink, status_code=201)
async def issue_link(
    req: IssueLinkRequest,
    lifecycle: LinkLifecycle = Depends(get_lifecycle),
):
    """Create a shareable checkout link for a product selection."""
    return await lifecycle.issue_link(req.name, req.selection, req.expiry_hours)


@router.get("", response_model=list[LinkResponse])
async def list_links(
    status: Optional[LinkStatus] = None,
    order_by: str = "created_at",
    order: str = "DESC",
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    lifecycle: LinkLifecycle = Depends(get_lifecycle),
):
    """List links. Unknown order_by columns fall back to created_at."""
    links = await lifecycle.list_links(status, order_by, order, limit, offset)
    return [_to_response(link, lifecycle) for link in links]


@router.get("/stats", response_model=StatisticsResponse)
async def link_statistics(lifecycle: LinkLifecycle = Depends(get_lifecycle)):
    stats = await lifecycle.get_statistics()
    return StatisticsResponse(**stats.model_dump(), conversion_rate=stats.conversion_rate)


@router.get("/{link_id}", response_model=LinkResponse)
async def get_link(link_id: int, lifecycle: LinkLifecycle = Depends(get_lifecycle)):
    link = await lifecycle.get_link(link_id)
    return _to_response(link, lifecycle)


@router.post("/{link_id}/toggle", response_model=StatusResponse)
async def toggle_link(link_id: int, lifecycle: LinkLifecycle = Depends(get_lifecycle)):
    """Flip active ↔ inactive. Activation respects the plan's link limit."""
    status = await lifecycle.toggle_status(link_id)
    return StatusResponse(id=link_id, status=status)


@router.patch("/{link_id}", response_model=StatusResponse)
async def update_link_status(
    link_id: int,
    req: StatusUpdateRequest,
    lifecycle: LinkLifecycle = Depends(get_lifecycle),
):
    status = await lifecycle.set_status(link_id, req.status)
    return StatusResponse(id=link_id, status=status)


@router.delete("/{link_id}", status_code=204)
async def delete_link(link_id: int, lifecycle: LinkLifecycle = Depends(get_lifecycle)):
    await lifecycle.delete_link(link_id)
    return Response(status_code=204)


@entitlements_router.get("/entitlements")
async def entitlements(lifecycle: LinkLifecycle = Depends(get_lifecycle)):
    """Plan limits, capabilities and current active link count."""
    return await lifecycle.entitlement_summary()
