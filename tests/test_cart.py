"""
Tests for the cart: store, manager rules and the /api/v1/cart endpoints.

Covers:
    - one line item per workshop (duplicate add leaves the cart unchanged)
    - pricing through the workshop's pricing options
    - unavailable / full workshops are rejected on add
    - self-healing validation drops items that became unavailable
    - guest → account merge: account item wins, merge is idempotent
    - cookie lifecycle and envelope shape of the HTTP API
"""

from datetime import timedelta

import pytest

from app.auth import ACCOUNT_SESSION_KEY
from app.core.exceptions import AlreadyInCart, CapacityExhausted, ItemNotFound, WorkshopUnavailable
from app.models import db
from app.models.cart import Cart
from app.services import cart_manager, cart_store
from app.services.cart_store import CartOwner

GUEST = CartOwner.session("a" * 32)
ACCOUNT = CartOwner.account(7)
CART_URL = "/api/v1/cart"


class TestCartOwner:
    def test_ref_round_trip(self):
        assert CartOwner.from_ref(GUEST.ref) == GUEST
        assert CartOwner.from_ref("account:7") == ACCOUNT
        assert CartOwner.from_ref("bogus") is None
        assert CartOwner.from_ref(None) is None

    def test_account_owner_is_flagged(self):
        assert ACCOUNT.is_account
        assert not GUEST.is_account


class TestCartManager:
    def test_add_prices_from_default_option(self, make_workshop):
        workshop = make_workshop(options=[
            ("standard", "Standard", "80.00", False),
            ("early", "Early bird", "60.00", True),
        ])
        cart = cart_manager.add(GUEST, workshop.id)
        assert cart["count"] == 1
        assert cart["items"][0]["pricing_option"] == "early"
        assert cart["total"] == 60.0
        assert cart["total_formatted"] == "$60.00"

    def test_unknown_option_falls_back_to_default(self, make_workshop):
        workshop = make_workshop(options=[("standard", "Standard", "80.00", True)])
        cart = cart_manager.add(GUEST, workshop.id, "no-such-option")
        assert cart["items"][0]["pricing_option"] == "standard"

    def test_workshop_without_options_uses_base_price(self, make_workshop):
        workshop = make_workshop(price="50.00")
        assert cart_manager.add(GUEST, workshop.id)["total"] == 50.0

    def test_duplicate_add_leaves_cart_unchanged(self, make_workshop):
        workshop = make_workshop(price="50.00")
        cart_manager.add(GUEST, workshop.id)
        with pytest.raises(AlreadyInCart):
            cart_manager.add(GUEST, workshop.id)
        cart = cart_manager.snapshot(GUEST)
        assert cart["count"] == 1
        assert cart["total"] == 50.0

    def test_add_rejects_unpublished_and_missing(self, make_workshop):
        with pytest.raises(WorkshopUnavailable):
            cart_manager.add(GUEST, make_workshop(status="draft").id)
        with pytest.raises(WorkshopUnavailable):
            cart_manager.add(GUEST, 4242)
        with pytest.raises(WorkshopUnavailable):
            cart_manager.add(GUEST, make_workshop(checkout_enabled=False).id)

    def test_full_workshop_without_waitlist_is_rejected(self, make_workshop, make_enrollment):
        workshop = make_workshop(capacity=1)
        make_enrollment(workshop)
        with pytest.raises(CapacityExhausted):
            cart_manager.add(GUEST, workshop.id)

    def test_full_workshop_with_waitlist_is_accepted(self, make_workshop, make_enrollment):
        workshop = make_workshop(capacity=1, waitlist=True)
        make_enrollment(workshop)
        assert cart_manager.add(GUEST, workshop.id)["count"] == 1

    def test_update_switches_option_and_price(self, make_workshop):
        workshop = make_workshop(options=[
            ("standard", "Standard", "80.00", True),
            ("member", "Member", "40.00", False),
        ])
        cart_manager.add(GUEST, workshop.id)
        cart = cart_manager.update(GUEST, workshop.id, "member")
        assert cart["items"][0]["pricing_option"] == "member"
        assert cart["total"] == 40.0

    def test_remove_missing_item(self, make_workshop):
        with pytest.raises(ItemNotFound):
            cart_manager.remove(GUEST, make_workshop().id)

    def test_clear(self, make_workshop):
        cart_manager.add(GUEST, make_workshop().id)
        cart_manager.add(GUEST, make_workshop(title="Second").id)
        assert cart_manager.clear(GUEST)["count"] == 0

    def test_validate_drops_unavailable_items(self, make_workshop):
        keep = make_workshop(title="Keep")
        drop = make_workshop(title="Drop")
        cart_manager.add(GUEST, keep.id)
        cart_manager.add(GUEST, drop.id)
        drop.status = "draft"
        db.session.commit()

        valid, invalidated = cart_manager.validate(GUEST)
        assert [i.workshop_id for i in valid] == [keep.id]
        assert invalidated == [{
            "workshop_id": drop.id, "title": "Drop", "reason": cart_manager.MSG_UNAVAILABLE,
        }]
        assert cart_manager.snapshot(GUEST)["count"] == 1


class TestMerge:
    def test_session_items_move_to_account(self, make_workshop):
        a, b = make_workshop(title="A"), make_workshop(title="B")
        cart_manager.add(GUEST, a.id)
        cart_manager.add(GUEST, b.id)
        cart = cart_manager.merge(GUEST, ACCOUNT)
        assert cart["count"] == 2
        assert cart_store.list_items(GUEST) == []

    def test_account_item_wins_on_overlap(self, make_workshop):
        workshop = make_workshop(options=[
            ("standard", "Standard", "80.00", True),
            ("member", "Member", "40.00", False),
        ])
        cart_manager.add(ACCOUNT, workshop.id, "member")
        cart_manager.add(GUEST, workshop.id, "standard")
        cart = cart_manager.merge(GUEST, ACCOUNT)
        assert cart["count"] == 1
        assert cart["items"][0]["pricing_option"] == "member"

    def test_merge_is_idempotent(self, make_workshop):
        cart_manager.add(GUEST, make_workshop().id)
        first = cart_manager.merge(GUEST, ACCOUNT)
        second = cart_manager.merge(GUEST, ACCOUNT)
        assert first == second

    def test_merge_without_guest_cart(self):
        assert cart_store.merge(GUEST, ACCOUNT) == []


def test_purge_expired_removes_stale_carts(make_workshop):
    cart_manager.add(GUEST, make_workshop().id)
    cart_manager.add(ACCOUNT, make_workshop(title="Other").id)
    stale = cart_store.get_cart(GUEST)
    stale.touched_at = stale.touched_at - timedelta(days=31)
    db.session.commit()

    assert cart_store.purge_expired(30) == 1
    assert Cart.query.count() == 1


# ── HTTP API ─────────────────────────────────────────────────────────────


class TestCartApi:
    def test_each_guest_gets_its_own_cart(self, app, client, make_workshop):
        workshop = make_workshop()
        client.post(f"{CART_URL}/items", json={"workshop_id": workshop.id})

        other = app.test_client()
        res = other.get(CART_URL)
        assert res.get_json()["cart"]["count"] == 0
        assert "fb_cart_session=" in res.headers.get("Set-Cookie", "")
        assert client.get(CART_URL).get_json()["cart"]["count"] == 1

    def test_first_request_mints_cookie(self, client):
        res = client.get(CART_URL)
        assert res.status_code == 200
        body = res.get_json()
        assert body["success"] is True
        assert body["cart"]["count"] == 0
        assert "fb_cart_session=" in res.headers.get("Set-Cookie", "")
        assert "HttpOnly" in res.headers["Set-Cookie"]

    def test_add_then_duplicate(self, client, make_workshop):
        workshop = make_workshop(price="50.00")
        res = client.post(f"{CART_URL}/items", json={"workshop_id": workshop.id})
        assert res.status_code == 201
        assert res.get_json()["message"] == cart_manager.MSG_ADDED

        res = client.post(f"{CART_URL}/items", json={"workshop_id": workshop.id})
        assert res.status_code == 409
        body = res.get_json()
        assert body["success"] is False
        assert body["reason"] == "already_in_cart"
        assert body["cart"]["count"] == 1
        assert body["cart"]["total"] == 50.0

    def test_add_requires_workshop_id(self, client):
        res = client.post(f"{CART_URL}/items", json={})
        assert res.status_code == 400
        assert res.get_json()["success"] is False

    def test_add_full_workshop(self, client, make_workshop, make_enrollment):
        workshop = make_workshop(capacity=1)
        make_enrollment(workshop)
        res = client.post(f"{CART_URL}/items", json={"workshop_id": workshop.id})
        assert res.status_code == 422
        assert res.get_json()["reason"] == "capacity_exhausted"

    def test_remove_and_clear(self, client, make_workshop):
        a, b = make_workshop(title="A"), make_workshop(title="B")
        client.post(f"{CART_URL}/items", json={"workshop_id": a.id})
        client.post(f"{CART_URL}/items", json={"workshop_id": b.id})

        res = client.delete(f"{CART_URL}/items/{a.id}")
        assert res.status_code == 200
        assert res.get_json()["cart"]["count"] == 1

        res = client.delete(f"{CART_URL}/items/{a.id}")
        assert res.status_code == 404
        assert res.get_json()["reason"] == "item_not_found"

        res = client.delete(CART_URL)
        assert res.get_json()["cart"]["count"] == 0

    def test_get_reports_removed_items(self, client, make_workshop):
        workshop = make_workshop()
        client.post(f"{CART_URL}/items", json={"workshop_id": workshop.id})
        workshop.checkout_enabled = False
        db.session.commit()

        body = client.get(CART_URL).get_json()
        assert body["cart"]["count"] == 0
        assert body["removed_items"][0]["workshop_id"] == workshop.id

    def test_sign_in_merges_guest_cart(self, client, make_workshop):
        from app.services.account_service import get_or_create_account

        account = get_or_create_account("ada@example.com", "Ada")
        db.session.commit()
        workshop = make_workshop()
        client.post(f"{CART_URL}/items", json={"workshop_id": workshop.id})

        with client.session_transaction() as sess:
            sess[ACCOUNT_SESSION_KEY] = account.id
        res = client.get(CART_URL)
        assert res.get_json()["cart"]["count"] == 1
        assert cart_store.list_items(CartOwner.account(account.id))[0].workshop_id == workshop.id

    def test_merge_requires_sign_in(self, client):
        res = client.post(f"{CART_URL}/merge", json={})
        assert res.status_code == 401
