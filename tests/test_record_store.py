"""
Tests for the record store: derived capacity and conditional status transitions.

Covers:
    - remaining_spots counts only completed enrollments (None = unlimited)
    - can_enroll: unpublished, checkout disabled, full with / without waitlist
    - transition_enrollment: winner / loser semantics and edge validation
    - annotate_partial_refund is conditional on the prior refund amount
    - administrator override leaves an audit note
"""

from decimal import Decimal

import pytest

from app.core.exceptions import InvalidTransition, NotFoundError
from app.models import db
from app.models.enrollment import ENROLLMENT_TRANSITIONS, validate_enrollment_transition
from app.models.waitlist import WAITLIST_TRANSITIONS, validate_waitlist_transition
from app.services import record_store


class TestCapacity:
    def test_unlimited_capacity_has_no_remaining_spots_value(self, make_workshop):
        workshop = make_workshop(capacity=0)
        assert record_store.remaining_spots(workshop) is None

    def test_only_completed_enrollments_take_seats(self, make_workshop, make_enrollment):
        workshop = make_workshop(capacity=3)
        make_enrollment(workshop, status="completed")
        make_enrollment(workshop, status="pending", email="p@example.com")
        make_enrollment(workshop, status="refunded", email="r@example.com")
        make_enrollment(workshop, status="cancelled", email="c@example.com")
        assert record_store.completed_count(workshop.id) == 1
        assert record_store.remaining_spots(workshop) == 2

    def test_remaining_spots_never_negative(self, make_workshop, make_enrollment):
        workshop = make_workshop(capacity=1)
        make_enrollment(workshop)
        make_enrollment(workshop, email="over@example.com")
        assert record_store.remaining_spots(workshop) == 0

    def test_can_enroll_full_without_waitlist(self, make_workshop, make_enrollment):
        workshop = make_workshop(capacity=1)
        make_enrollment(workshop)
        allowed, reason = record_store.can_enroll(workshop)
        assert allowed is False
        assert reason == "This workshop is full."

    def test_can_enroll_full_with_waitlist_mentions_waitlist(self, make_workshop, make_enrollment):
        workshop = make_workshop(capacity=1, waitlist=True)
        make_enrollment(workshop)
        allowed, reason = record_store.can_enroll(workshop)
        assert allowed is True
        assert "waitlist" in reason

    def test_can_enroll_rejects_unpublished_and_disabled(self, make_workshop):
        assert record_store.can_enroll(make_workshop(status="draft"))[0] is False
        assert record_store.can_enroll(make_workshop(checkout_enabled=False))[0] is False

    def test_availability_snapshot(self, make_workshop, make_enrollment, make_entry):
        workshop = make_workshop(capacity=2, waitlist=True)
        make_enrollment(workshop)
        make_entry(workshop)
        data = record_store.availability(workshop)
        assert data["completed_count"] == 1
        assert data["remaining_spots"] == 1
        assert data["waitlist_count"] == 1
        assert data["can_enroll"] is True


class TestLookups:
    def test_missing_workshop_raises_not_found(self):
        with pytest.raises(NotFoundError):
            record_store.get_workshop(9999)

    def test_missing_enrollment_raises_not_found(self):
        with pytest.raises(NotFoundError):
            record_store.get_enrollment(None)


class TestTransitions:
    def test_transition_maps_have_terminal_states(self):
        assert ENROLLMENT_TRANSITIONS["refunded"] == []
        assert ENROLLMENT_TRANSITIONS["cancelled"] == []
        assert WAITLIST_TRANSITIONS["converted"] == []
        assert validate_enrollment_transition("failed", "completed")
        assert not validate_enrollment_transition("refunded", "completed")
        assert validate_waitlist_transition("expired", "notified")
        assert not validate_waitlist_transition("waiting", "converted")

    def test_first_writer_wins(self, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(), status="pending")
        assert record_store.transition_enrollment(enrollment.id, "pending", "completed") is True
        assert record_store.transition_enrollment(enrollment.id, "pending", "completed") is False
        db.session.commit()
        assert db.session.get(type(enrollment), enrollment.id).status == "completed"

    def test_extra_fields_written_with_transition(self, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(), status="pending")
        record_store.transition_enrollment(
            enrollment.id, "pending", "failed", gateway_payment_intent_id="pi_9",
        )
        db.session.commit()
        assert enrollment.status == "failed"
        assert enrollment.gateway_payment_intent_id == "pi_9"

    def test_multiple_expected_states(self, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(), status="failed")
        assert record_store.transition_enrollment(enrollment.id, ("pending", "failed"), "completed")

    def test_edge_outside_state_machine_is_rejected(self, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(), status="refunded")
        with pytest.raises(InvalidTransition):
            record_store.transition_enrollment(enrollment.id, "refunded", "completed")

    def test_waitlist_transition(self, make_workshop, make_entry):
        entry = make_entry(make_workshop(waitlist=True))
        assert record_store.transition_waitlist_entry(entry.id, "waiting", "notified")
        assert not record_store.transition_waitlist_entry(entry.id, "waiting", "notified")
        with pytest.raises(InvalidTransition):
            record_store.transition_waitlist_entry(entry.id, "waiting", "converted")


class TestRefundAnnotation:
    def test_partial_refund_is_conditional_on_prior_amount(self, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(price="100.00"))
        assert record_store.annotate_partial_refund(enrollment.id, None, refund_amount=Decimal("30.00"))
        # A replay that still believes nothing was refunded loses.
        assert not record_store.annotate_partial_refund(enrollment.id, None, refund_amount=Decimal("30.00"))
        assert record_store.annotate_partial_refund(
            enrollment.id, Decimal("30.00"), refund_amount=Decimal("50.00"),
        )
        db.session.commit()
        assert enrollment.refund_amount == Decimal("50.00")
        assert enrollment.status == "completed"
        assert enrollment.is_partially_refunded

    def test_partial_refund_requires_completed(self, make_workshop, make_enrollment):
        enrollment = make_enrollment(make_workshop(), status="refunded")
        assert not record_store.annotate_partial_refund(enrollment.id, None, refund_amount=Decimal("1.00"))


def test_override_appends_audit_note(make_workshop, make_enrollment):
    enrollment = make_enrollment(make_workshop(), status="pending")
    previous = record_store.override_enrollment_status(enrollment, "completed", "paid by cheque")
    db.session.commit()
    assert previous == "pending"
    assert enrollment.status == "completed"
    assert enrollment.completed_at is not None
    assert "pending -> completed (paid by cheque)" in enrollment.notes
