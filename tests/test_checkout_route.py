"""Tests for the visitor route GET /jump-to-checkout/{token}."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from checkout_links.db.link_store import LinkStore
from checkout_links.models.link import LinkStatus, SelectionItem, TokenFormat
from checkout_links.services.token_codec import encode_legacy_token
from checkout_links.services.visitor_session import (
    LINK_COOKIE, LINK_SLOT, SESSION_COOKIE, read_link_cookie,
)


async def _issue(client, admin_headers, item_id=42, quantity=2, name="Summer") -> dict:
    resp = await client.post("/api/v1/admin/links", headers=admin_headers, json={
        "name": name,
        "selection": [{"catalog_item_id": item_id, "quantity": quantity}],
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _get_link(client, admin_headers, link_id: int) -> dict:
    resp = await client.get(f"/api/v1/admin/links/{link_id}", headers=admin_headers)
    assert resp.status_code == 200
    return resp.json()


@pytest.mark.asyncio
async def test_redirects_to_checkout_and_sets_cookies(client, admin_headers, storefront, sessions, secret):
    issued = await _issue(client, admin_headers)

    resp = await client.get(f"/jump-to-checkout/{issued['token']}")

    assert resp.status_code == 302
    assert resp.headers["location"] == "/checkout"
    session_id = resp.cookies.get(SESSION_COOKIE)
    assert session_id
    assert read_link_cookie(resp.cookies.get(LINK_COOKIE), secret) == issued["id"]
    assert sessions.get(session_id, LINK_SLOT) == issued["id"]
    assert [(l.catalog_item_id, l.quantity) for l in storefront.cart(session_id)] == [(42, 2)]

    link = await _get_link(client, admin_headers, issued["id"])
    assert link["visits"] == 1


@pytest.mark.asyncio
async def test_link_cookie_is_http_only(client, admin_headers):
    issued = await _issue(client, admin_headers)
    resp = await client.get(f"/jump-to-checkout/{issued['token']}")
    set_cookies = [v for k, v in resp.headers.multi_items() if k == "set-cookie"]
    link_cookie = next(c for c in set_cookies if c.startswith(f"{LINK_COOKIE}="))
    assert "HttpOnly" in link_cookie
    assert "Max-Age=86400" in link_cookie


@pytest.mark.asyncio
async def test_existing_shopper_session_reused(client, admin_headers, storefront):
    issued = await _issue(client, admin_headers)
    client.cookies.set(SESSION_COOKIE, "returning-shopper")

    resp = await client.get(f"/jump-to-checkout/{issued['token']}")
    assert resp.status_code == 302
    assert SESSION_COOKIE not in resp.cookies
    assert len(storefront.cart("returning-shopper")) == 1


@pytest.mark.asyncio
async def test_unknown_token_renders_403_page(client):
    resp = await client.get("/jump-to-checkout/doesnotexist")
    assert resp.status_code == 403
    assert resp.headers["content-type"].startswith("text/html")
    assert "Invalid checkout link." in resp.text
    assert LINK_COOKIE not in resp.cookies


@pytest.mark.asyncio
async def test_disabled_link_renders_403_page(client, admin_headers):
    issued = await _issue(client, admin_headers)
    await client.post(f"/api/v1/admin/links/{issued['id']}/toggle", headers=admin_headers)

    resp = await client.get(f"/jump-to-checkout/{issued['token']}")
    assert resp.status_code == 403
    assert "disabled" in resp.text

    link = await _get_link(client, admin_headers, issued["id"])
    assert link["visits"] == 0


@pytest.mark.asyncio
async def test_expired_link_renders_403_page(client, db_session):
    await LinkStore(db_session).insert_link(
        name="Old",
        token="expired001",
        token_format=TokenFormat.SHORT,
        url="http://shop.test/jump-to-checkout/expired001",
        selection=[SelectionItem(catalog_item_id=42)],
        expiry_hours=1,
        expires_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )
    await db_session.commit()

    resp = await client.get("/jump-to-checkout/expired001")
    assert resp.status_code == 403
    assert "expired" in resp.text


@pytest.mark.asyncio
async def test_nothing_available_renders_200_page(client, admin_headers, secret):
    issued = await _issue(client, admin_headers, item_id=7, quantity=1, name="Hats")

    resp = await client.get(f"/jump-to-checkout/{issued['token']}")
    assert resp.status_code == 200
    assert "Products Not Available" in resp.text
    assert "Sun Hat" in resp.text
    # Visit and attribution still happen
    assert read_link_cookie(resp.cookies.get(LINK_COOKIE), secret) == issued["id"]
    link = await _get_link(client, admin_headers, issued["id"])
    assert link["visits"] == 1


@pytest.mark.asyncio
async def test_item_names_are_escaped(client, admin_headers, storefront):
    from checkout_links.services.storefront import CatalogItem
    storefront.put_item(CatalogItem(66, "<script>alert(1)</script>", in_stock=False))
    issued = await _issue(client, admin_headers, item_id=66, quantity=1, name="XSS")

    resp = await client.get(f"/jump-to-checkout/{issued['token']}")
    assert "<script>alert(1)</script>" not in resp.text
    assert "&lt;script&gt;" in resp.text


@pytest.mark.asyncio
async def test_legacy_token_route(client, db_session, storefront, secret):
    token = encode_legacy_token([SelectionItem(catalog_item_id=43, quantity=3)], secret)
    await LinkStore(db_session).insert_link(
        name="Legacy",
        token=token,
        token_format=TokenFormat.LEGACY,
        url=f"http://shop.test/jump-to-checkout/{token}",
        selection=[],
    )
    await db_session.commit()

    resp = await client.get(f"/jump-to-checkout/{token}")
    assert resp.status_code == 302
    session_id = resp.cookies.get(SESSION_COOKIE)
    assert [(l.catalog_item_id, l.quantity) for l in storefront.cart(session_id)] == [(43, 3)]


@pytest.mark.asyncio
async def test_resolution_responses_not_cached(client, admin_headers):
    issued = await _issue(client, admin_headers)
    resp = await client.get(f"/jump-to-checkout/{issued['token']}")
    assert "no-store" in resp.headers["cache-control"]


@pytest.mark.asyncio
async def test_inactive_status_via_store(client, db_session):
    link = await LinkStore(db_session).insert_link(
        name="Off",
        token="inactive01",
        token_format=TokenFormat.SHORT,
        url="http://shop.test/jump-to-checkout/inactive01",
        selection=[SelectionItem(catalog_item_id=42)],
    )
    await LinkStore(db_session).update_status(link.id, LinkStatus.INACTIVE)
    await db_session.commit()

    resp = await client.get("/jump-to-checkout/inactive01")
    assert resp.status_code == 403
