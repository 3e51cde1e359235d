"""
Tests for the administrator API (/api/v1/admin).

Covers:
    - API-key authentication and the viewer/admin role split
    - workshop create/update with pricing options
    - manual (offline payment) enrollment, including waitlist conversion
    - gateway refunds (full, partial, already refunded) via FakeGateway
    - status override frees the seat for the waitlist
    - enrollment listing filters and the notification outbox
"""

import pytest

from app.models import db
from app.models.enrollment import Account, Enrollment
from app.models.ledger import ProcessedEvent
from app.models.waitlist import WaitlistEntry
from app.services import waitlist_service
from conftest import ADMIN_HEADERS, VIEWER_HEADERS, minutes_ago

BASE = "/api/v1/admin"


class TestAuth:
    def test_missing_key_is_401(self, client):
        assert client.get(f"{BASE}/workshops").status_code == 401

    def test_unknown_key_is_401(self, client):
        assert client.get(f"{BASE}/workshops", headers={"X-API-Key": "nope"}).status_code == 401

    def test_viewer_can_read_but_not_write(self, client):
        assert client.get(f"{BASE}/workshops", headers=VIEWER_HEADERS).status_code == 200
        res = client.post(f"{BASE}/workshops", json={"title": "X"}, headers=VIEWER_HEADERS)
        assert res.status_code == 403

    def test_form_posts_are_refused(self, client):
        res = client.post(f"{BASE}/workshops", data={"title": "X"}, headers=ADMIN_HEADERS)
        assert res.status_code == 415


class TestWorkshops:
    def test_create_with_pricing_options(self, client):
        res = client.post(f"{BASE}/workshops", headers=ADMIN_HEADERS, json={
            "title": "Bookbinding",
            "capacity": 8,
            "waitlist_enabled": True,
            "base_price": "45",
            "starts_at": "2026-11-01T10:00:00+00:00",
            "ends_at": "2026-11-01T16:00:00+00:00",
            "pricing_options": [
                {"id": "standard", "label": "Standard", "price": "45.00", "is_default": True},
                {"id": "student", "label": "Student", "price": "30.00"},
            ],
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "published"
        assert [o["id"] for o in body["pricing_options"]] == ["standard", "student"]

    def test_update_replaces_options(self, client, make_workshop):
        workshop = make_workshop(options=[("standard", "Standard", "45.00", True)])
        res = client.put(f"{BASE}/workshops/{workshop.id}", headers=ADMIN_HEADERS, json={
            "title": "Renamed",
            "pricing_options": [{"id": "vip", "price": "99.00", "is_default": True}],
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["title"] == "Renamed"
        assert body["pricing_options"] == [{"id": "vip", "label": "vip", "price": 99.0, "is_default": True}]

    def test_invalid_payload(self, client):
        res = client.post(f"{BASE}/workshops", headers=ADMIN_HEADERS, json={"title": "X", "capacity": -1})
        assert res.status_code == 422
        res = client.post(f"{BASE}/workshops", headers=ADMIN_HEADERS, json={"capacity": 5})
        assert res.status_code == 422

    def test_end_before_start_rejected_on_update(self, client, make_workshop):
        workshop = make_workshop()
        client.put(f"{BASE}/workshops/{workshop.id}", headers=ADMIN_HEADERS,
                   json={"starts_at": "2026-11-01T10:00:00+00:00"})
        res = client.put(f"{BASE}/workshops/{workshop.id}", headers=ADMIN_HEADERS,
                         json={"ends_at": "2026-11-01T09:00:00+00:00"})
        assert res.status_code == 422

    def test_draft_workshop_listed_for_admin_only(self, client, make_workshop):
        make_workshop(title="Hidden", status="draft")
        admin_titles = [w["title"] for w in client.get(f"{BASE}/workshops", headers=VIEWER_HEADERS).get_json()["items"]]
        public_titles = [w["title"] for w in client.get("/api/v1/workshops").get_json()["items"]]
        assert "Hidden" in admin_titles
        assert "Hidden" not in public_titles


class TestManualEnrollment:
    def test_manual_enrollment_is_completed(self, client, make_workshop):
        workshop = make_workshop(price="50.00")
        res = client.post(f"{BASE}/enrollments", headers=ADMIN_HEADERS, json={
            "workshop_id": workshop.id, "email": "Cash@Example.com", "name": "Cash Payer",
            "note": "paid at the door",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "completed"
        assert body["payment_method"] == "manual"
        assert body["amount"] == 50.0
        assert "paid at the door" in body["notes"]
        assert Account.query.filter_by(email="cash@example.com").count() == 1
        assert ProcessedEvent.query.count() == 0

        outbox = client.get(f"{BASE}/notifications", headers=VIEWER_HEADERS,
                            query_string={"enrollment_id": body["id"]}).get_json()
        assert [n["kind"] for n in outbox["items"]] == ["enrollment_confirmation"]

    def test_manual_enrollment_notifies_admin_and_new_account(self, client, app, monkeypatch, make_workshop):
        monkeypatch.setitem(app.config, "ADMIN_EMAIL", "office@example.com")
        workshop = make_workshop()
        payload = {"workshop_id": workshop.id, "email": "walkin@example.com", "name": "Walk In"}
        first = client.post(f"{BASE}/enrollments", headers=ADMIN_HEADERS, json=payload).get_json()
        client.post(f"{BASE}/enrollments", headers=ADMIN_HEADERS, json=payload)

        outbox = client.get(f"{BASE}/notifications", headers=VIEWER_HEADERS,
                            query_string={"enrollment_id": first["id"]}).get_json()
        assert [(n["kind"], n["recipient"]) for n in outbox["items"]] == [
            ("enrollment_confirmation", "walkin@example.com"),
            ("admin_enrollment", "office@example.com"),
        ]
        welcome = client.get(f"{BASE}/notifications", headers=VIEWER_HEADERS,
                             query_string={"kind": "account_welcome"}).get_json()
        assert [n["recipient"] for n in welcome["items"]] == ["walkin@example.com"]

    def test_manual_enrollment_converts_waitlist_entry(self, client, make_workshop, make_entry):
        workshop = make_workshop(capacity=1, waitlist=True)
        entry = make_entry(workshop)
        waitlist_service.promote_next(workshop.id)

        res = client.post(f"{BASE}/enrollments", headers=ADMIN_HEADERS, json={
            "workshop_id": workshop.id, "email": entry.customer_email, "waitlist_entry_id": entry.id,
        })
        assert res.status_code == 201
        row = db.session.get(WaitlistEntry, entry.id)
        db.session.refresh(row)
        assert row.status == "converted"
        assert row.enrollment_id == res.get_json()["id"]

    def test_manual_enrollment_rejects_waiting_entry(self, client, make_workshop, make_entry):
        workshop = make_workshop(capacity=1, waitlist=True)
        entry = make_entry(workshop)
        res = client.post(f"{BASE}/enrollments", headers=ADMIN_HEADERS, json={
            "workshop_id": workshop.id, "email": entry.customer_email, "waitlist_entry_id": entry.id,
        })
        assert res.status_code == 422
        assert Enrollment.query.count() == 0

    def test_manual_enrollment_requires_workshop(self, client):
        res = client.post(f"{BASE}/enrollments", headers=ADMIN_HEADERS, json={"email": "a@example.com"})
        assert res.status_code == 422


class TestRefund:
    def test_full_refund_frees_seat_for_waitlist(self, client, gateway, make_workshop, make_enrollment, make_entry):
        workshop = make_workshop(capacity=1, waitlist=True, price="50.00")
        enrollment = make_enrollment(workshop, payment_intent="pi_admin")
        entry = make_entry(workshop)

        res = client.post(f"{BASE}/enrollments/{enrollment.id}/refund", headers=ADMIN_HEADERS,
                          json={"reason": "requested_by_customer"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["refund_id"] == "re_test_1"
        assert body["enrollment"]["status"] == "refunded"
        assert gateway.refunds[0] == {"id": "re_test_1", "payment_intent": "pi_admin",
                                      "amount_cents": 5000, "reason": "requested_by_customer"}
        row = db.session.get(WaitlistEntry, entry.id)
        db.session.refresh(row)
        assert row.status == "notified"

    def test_partial_refund(self, client, gateway, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(price="100.00"), payment_intent="pi_part")
        res = client.post(f"{BASE}/enrollments/{enrollment.id}/refund", headers=ADMIN_HEADERS,
                          json={"amount": "25.00"})
        body = res.get_json()
        assert body["message"] == "Partial refund processed."
        assert body["enrollment"]["status"] == "completed"
        assert body["enrollment"]["refund_amount"] == 25.0
        assert gateway.refunds[0]["amount_cents"] == 2500

    def test_second_refund_is_conflict(self, client, gateway, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(price="100.00"), payment_intent="pi_twice")
        client.post(f"{BASE}/enrollments/{enrollment.id}/refund", headers=ADMIN_HEADERS, json={"amount": "10"})
        res = client.post(f"{BASE}/enrollments/{enrollment.id}/refund", headers=ADMIN_HEADERS, json={})
        assert res.status_code == 409
        assert len(gateway.refunds) == 1

    @pytest.mark.parametrize("amount", ["0", "-5", "150.00", "abc"])
    def test_refund_amount_bounds(self, client, gateway, make_workshop, make_enrollment, amount):
        enrollment = make_enrollment(make_workshop(price="100.00"), payment_intent="pi_bounds")
        res = client.post(f"{BASE}/enrollments/{enrollment.id}/refund", headers=ADMIN_HEADERS,
                          json={"amount": amount})
        assert res.status_code == 422
        assert gateway.refunds == []

    def test_manual_enrollment_cannot_be_gateway_refunded(self, client, gateway, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(), payment_method="manual")
        res = client.post(f"{BASE}/enrollments/{enrollment.id}/refund", headers=ADMIN_HEADERS, json={})
        assert res.status_code == 422

    def test_gateway_refusal_is_502(self, client, gateway, make_workshop, make_enrollment):
        gateway.fail_with = "HTTP 400: charge already refunded"
        enrollment = make_enrollment(make_workshop(), payment_intent="pi_refused")
        res = client.post(f"{BASE}/enrollments/{enrollment.id}/refund", headers=ADMIN_HEADERS, json={})
        assert res.status_code == 502
        db.session.refresh(enrollment)
        assert enrollment.status == "completed"


class TestStatusOverride:
    def test_cancel_completed_promotes_waitlist(self, client, make_workshop, make_enrollment, make_entry):
        workshop = make_workshop(capacity=1, waitlist=True)
        enrollment = make_enrollment(workshop)
        entry = make_entry(workshop)

        res = client.post(f"{BASE}/enrollments/{enrollment.id}/status", headers=ADMIN_HEADERS,
                          json={"status": "cancelled", "note": "no-show"})
        assert res.status_code == 200
        assert "completed -> cancelled (no-show)" in res.get_json()["notes"]
        row = db.session.get(WaitlistEntry, entry.id)
        db.session.refresh(row)
        assert row.status == "notified"

    def test_unknown_status(self, client, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop())
        res = client.post(f"{BASE}/enrollments/{enrollment.id}/status", headers=ADMIN_HEADERS,
                          json={"status": "teleported"})
        assert res.status_code == 422

    def test_missing_enrollment(self, client):
        res = client.post(f"{BASE}/enrollments/999/status", headers=ADMIN_HEADERS, json={"status": "cancelled"})
        assert res.status_code == 404


class TestListings:
    def test_enrollment_filters_and_pagination(self, client, make_workshop, make_enrollment):
        a, b = make_workshop(title="A"), make_workshop(title="B")
        make_enrollment(a, email="x@example.com")
        make_enrollment(a, status="pending", email="y@example.com")
        make_enrollment(b, email="x@example.com")

        def _get(**params):
            return client.get(f"{BASE}/enrollments", headers=VIEWER_HEADERS, query_string=params).get_json()

        assert _get()["total"] == 3
        assert _get(workshop_id=a.id)["total"] == 2
        assert _get(status="pending")["total"] == 1
        assert _get(email="X@example.com")["total"] == 2
        page = _get(limit=1, offset=1)
        assert page["total"] == 3
        assert len(page["items"]) == 1

    def test_waitlist_listing(self, client, make_workshop, make_entry):
        workshop = make_workshop(capacity=1, waitlist=True)
        make_entry(workshop, email="one@example.com", created_at=minutes_ago(5))
        make_entry(workshop, email="two@example.com", created_at=minutes_ago(1))
        body = client.get(f"{BASE}/workshops/{workshop.id}/waitlist", headers=VIEWER_HEADERS).get_json()
        assert [e["customer_email"] for e in body["items"]] == ["one@example.com", "two@example.com"]

    def test_admin_cancel_and_notify_entry(self, client, make_workshop, make_entry):
        workshop = make_workshop(capacity=1, waitlist=True)
        entry = make_entry(workshop)
        res = client.post(f"{BASE}/waitlist/{entry.id}/notify", headers=ADMIN_HEADERS, json={})
        assert res.get_json()["status"] == "notified"
        res = client.post(f"{BASE}/waitlist/{entry.id}/cancel", headers=ADMIN_HEADERS, json={})
        assert res.get_json()["status"] == "cancelled"
        res = client.post(f"{BASE}/waitlist/{entry.id}/cancel", headers=ADMIN_HEADERS, json={})
        assert res.status_code == 409
