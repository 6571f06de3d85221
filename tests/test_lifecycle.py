"""Tests for link issuance, status changes and plan limits."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from checkout_links.db.link_store import LinkStore
from checkout_links.errors import EntitlementExceeded, InvalidSelection, LinkNotFound
from checkout_links.models.link import LinkStatus, SelectionItem, TokenFormat
from checkout_links.services.entitlements import PlanEntitlementPolicy, free_tier, pro_tier
from checkout_links.services.expiry import BaseTierExpiryPolicy, HonorHintExpiryPolicy, expiry_policy_for
from checkout_links.services.lifecycle import LinkLifecycle, build_link_url
from checkout_links.services.token_codec import is_valid_short_token

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _free(db_session, **kwargs) -> LinkLifecycle:
    return LinkLifecycle(
        db_session,
        PlanEntitlementPolicy(free_tier()),
        BaseTierExpiryPolicy(),
        clock=lambda: NOW,
        **kwargs,
    )


def _pro(db_session) -> LinkLifecycle:
    return LinkLifecycle(
        db_session,
        PlanEntitlementPolicy(pro_tier()),
        HonorHintExpiryPolicy(),
        clock=lambda: NOW,
    )


def _one(item_id: int = 42, quantity: int = 2) -> list[SelectionItem]:
    return [SelectionItem(catalog_item_id=item_id, quantity=quantity)]


# ── Issuance ────────────────────────────────────────────────────────────────

class TestIssueLink:
    @pytest.mark.asyncio
    async def test_issues_active_short_link(self, db_session):
        issued = await _free(db_session).issue_link("Summer", _one())

        assert is_valid_short_token(issued.token)
        assert issued.url == build_link_url(issued.token)
        assert issued.url == f"http://shop.test/jump-to-checkout/{issued.token}"

        row = await LinkStore(db_session).get_by_id(issued.id)
        assert row.status == LinkStatus.ACTIVE
        assert row.token_format == TokenFormat.SHORT
        assert row.visits == 0 and row.conversions == 0
        assert row.expires_at is None and row.expiry_hours == 0

    @pytest.mark.asyncio
    async def test_name_is_trimmed_and_required(self, db_session):
        lifecycle = _free(db_session)
        with pytest.raises(InvalidSelection):
            await lifecycle.issue_link("   ", _one())
        issued = await lifecycle.issue_link("  Padded  ", _one())
        link = await lifecycle.get_link(issued.id)
        assert link.name == "Padded"

    @pytest.mark.asyncio
    async def test_empty_selection_rejected(self, db_session):
        with pytest.raises(InvalidSelection) as exc:
            await _free(db_session).issue_link("Empty", [])
        assert exc.value.message == "No products selected."

    @pytest.mark.asyncio
    async def test_minimum_items_setting(self, db_session):
        lifecycle = LinkLifecycle(
            db_session, PlanEntitlementPolicy(pro_tier()), BaseTierExpiryPolicy(), min_items=2,
        )
        with pytest.raises(InvalidSelection):
            await lifecycle.issue_link("Too few", _one())
        await lifecycle.issue_link("Enough", _one(42) + _one(43))

    @pytest.mark.asyncio
    async def test_free_tier_active_link_limit(self, db_session):
        lifecycle = _free(db_session)
        for i in range(5):
            await lifecycle.issue_link(f"Link {i}", _one())

        with pytest.raises(EntitlementExceeded) as exc:
            await lifecycle.issue_link("Sixth", _one())
        assert exc.value.capability == "max_active_links"
        assert exc.value.limit == 5
        assert await LinkStore(db_session).count() == 5

    @pytest.mark.asyncio
    async def test_inactive_links_do_not_count_toward_limit(self, db_session):
        lifecycle = _free(db_session)
        ids = [(await lifecycle.issue_link(f"Link {i}", _one())).id for i in range(5)]
        await lifecycle.set_status(ids[0], LinkStatus.INACTIVE)
        await lifecycle.issue_link("Replacement", _one())
        assert await LinkStore(db_session).count() == 6

    @pytest.mark.asyncio
    async def test_free_tier_single_item(self, db_session):
        with pytest.raises(EntitlementExceeded) as exc:
            await _free(db_session).issue_link("Bundle", _one(42) + _one(43))
        assert exc.value.capability == "max_items_per_link"
        assert await LinkStore(db_session).count() == 0

    @pytest.mark.asyncio
    async def test_pro_tier_unlimited(self, db_session):
        lifecycle = _pro(db_session)
        for i in range(7):
            await lifecycle.issue_link(f"Pro {i}", _one(42) + _one(43) + _one(8, 1))
        assert await LinkStore(db_session).count_active() == 7

    @pytest.mark.asyncio
    async def test_base_tier_ignores_expiry_hint(self, db_session):
        lifecycle = _free(db_session)
        issued = await lifecycle.issue_link("Hinted", _one(), expiry_hint_hours=48)
        link = await lifecycle.get_link(issued.id)
        assert link.expires_at is None
        assert link.expiry_hours == 0

    @pytest.mark.asyncio
    async def test_pro_tier_honors_expiry_hint(self, db_session):
        lifecycle = _pro(db_session)
        issued = await lifecycle.issue_link("Weekend", _one(), expiry_hint_hours=48)
        link = await lifecycle.get_link(issued.id)
        assert link.expiry_hours == 48
        assert link.expires_at == NOW + timedelta(hours=48)
        assert not lifecycle.is_expired(link)

    @pytest.mark.asyncio
    async def test_negative_expiry_rejected(self, db_session):
        with pytest.raises(InvalidSelection):
            await _pro(db_session).issue_link("Bad", _one(), expiry_hint_hours=-1)

    @pytest.mark.asyncio
    async def test_token_collision_retried(self, db_session, monkeypatch):
        lifecycle = _free(db_session)
        first = await lifecycle.issue_link("First", _one())

        tokens = iter([first.token, "freshtoken"])

        async def fake_generate(exists):
            return next(tokens)

        monkeypatch.setattr("checkout_links.services.lifecycle.generate_short_token", fake_generate)
        second = await lifecycle.issue_link("Second", _one())
        assert second.token == "freshtoken"


# ── Status + deletion ───────────────────────────────────────────────────────

class TestStatus:
    @pytest.mark.asyncio
    async def test_toggle_round_trip(self, db_session):
        lifecycle = _free(db_session)
        issued = await lifecycle.issue_link("Toggle", _one())
        assert await lifecycle.toggle_status(issued.id) == LinkStatus.INACTIVE
        assert await lifecycle.toggle_status(issued.id) == LinkStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_toggle_to_active_blocked_at_limit(self, db_session):
        lifecycle = _free(db_session)
        ids = [(await lifecycle.issue_link(f"Link {i}", _one())).id for i in range(5)]
        await lifecycle.toggle_status(ids[0])
        await lifecycle.issue_link("Fills the slot", _one())

        with pytest.raises(EntitlementExceeded):
            await lifecycle.toggle_status(ids[0])
        link = await lifecycle.get_link(ids[0])
        assert link.status == LinkStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_unknown_link(self, db_session):
        lifecycle = _free(db_session)
        with pytest.raises(LinkNotFound):
            await lifecycle.toggle_status(12345)
        with pytest.raises(LinkNotFound):
            await lifecycle.delete_link(12345)

    @pytest.mark.asyncio
    async def test_delete_frees_a_slot(self, db_session):
        lifecycle = _free(db_session)
        ids = [(await lifecycle.issue_link(f"Link {i}", _one())).id for i in range(5)]
        await lifecycle.delete_link(ids[0])
        with pytest.raises(LinkNotFound):
            await lifecycle.get_link(ids[0])
        await lifecycle.issue_link("Next", _one())

    @pytest.mark.asyncio
    async def test_entitlement_summary(self, db_session):
        lifecycle = _free(db_session)
        await lifecycle.issue_link("One", _one())
        summary = await lifecycle.entitlement_summary()
        assert summary["tier"] == "free"
        assert summary["active_links"] == 1
        assert summary["max_active_links"] == 5
        assert summary["can_create_link"] is True


def test_expiry_policy_follows_capability():
    assert isinstance(expiry_policy_for(PlanEntitlementPolicy(free_tier())), BaseTierExpiryPolicy)
    assert isinstance(expiry_policy_for(PlanEntitlementPolicy(pro_tier())), HonorHintExpiryPolicy)
