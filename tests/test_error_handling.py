"""Tests for structured error responses."""
from __future__ import annotations

import pytest

from checkout_links.errors import (
    EntitlementExceeded, InvalidToken, NoProductsAvailable, SkippedItem, StorageFailure,
)


@pytest.mark.asyncio
async def test_404_returns_structured_error(client, admin_headers):
    resp = await client.get("/api/v1/admin/links/999999", headers=admin_headers)
    assert resp.status_code == 404
    data = resp.json()
    assert data == {"error": "link_not_found", "message": "Link not found."}


@pytest.mark.asyncio
async def test_validation_error_returns_structured_error(client, admin_headers):
    resp = await client.post("/api/v1/admin/links", headers=admin_headers, json={"selection": []})
    assert resp.status_code == 422
    data = resp.json()
    assert data["error"] == "validation_error"
    assert "details" in data
    assert isinstance(data["details"], list)
    assert any("name" in d["field"] for d in data["details"])


@pytest.mark.asyncio
async def test_invalid_pagination_returns_structured_error(client, admin_headers):
    resp = await client.get("/api/v1/admin/links?limit=-1", headers=admin_headers)
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_storage_failure_is_500_envelope(client, admin_headers, monkeypatch):
    async def broken_insert(self, **kwargs):
        raise StorageFailure()

    monkeypatch.setattr("checkout_links.db.link_store.LinkStore.insert_link", broken_insert)
    resp = await client.post("/api/v1/admin/links", headers=admin_headers, json={
        "name": "Broken", "selection": [{"catalog_item_id": 42}],
    })
    assert resp.status_code == 500
    assert resp.json()["error"] == "storage_failure"


@pytest.mark.asyncio
async def test_health_reports_db(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["db"] == "connected"
    resp = await client.get("/ready")
    assert resp.json() == {"ready": True}


class TestErrorPayloads:
    def test_codes_and_statuses(self):
        assert InvalidToken().http_status == 403
        assert InvalidToken().to_response() == {"error": "invalid_token", "message": "Invalid checkout link."}
        assert StorageFailure().http_status == 500

    def test_entitlement_payload(self):
        exc = EntitlementExceeded("max_active_links", 5)
        body = exc.to_response()
        assert body["capability"] == "max_active_links"
        assert body["limit"] == 5

    def test_no_products_payload(self):
        exc = NoProductsAvailable([SkippedItem(8, "Travel Mug", "insufficient_stock", available=1)])
        assert exc.http_status == 200
        assert exc.to_response()["skipped"][0]["available"] == 1
        assert exc.skipped[0].label() == "Travel Mug (only 1 available)"
