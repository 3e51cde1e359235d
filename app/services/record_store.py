"""
Workshop Enrollment Platform
Record Store — keyed access to Workshop, Enrollment and WaitlistEntry.

Every status change goes through ``transition_enrollment`` /
``transition_waitlist_entry``: a single conditional UPDATE
(``WHERE id = :id AND status = :expected``). The caller learns whether its
update won; of two concurrent writers starting from the same state exactly
one sees ``True``.

Functions here never commit. The calling service owns the transaction so
that a status transition and its companion writes land atomically.

Usage:
    from app.services import record_store

    if record_store.transition_enrollment(e.id, "pending", "completed", completed_at=now):
        ...  # this request won the transition; apply side effects
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from app.core.exceptions import InvalidTransition, NotFoundError
from app.models import db
from app.models.enrollment import ENROLLMENT_TRANSITIONS, Enrollment
from app.models.waitlist import WAITLIST_TRANSITIONS, WaitlistEntry
from app.models.workshop import Workshop

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite returns naive datetimes; coerce to UTC-aware for comparison."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Lookups ──────────────────────────────────────────────────────────────────

def get_workshop(workshop_id) -> Workshop:
    workshop = db.session.get(Workshop, workshop_id) if workshop_id else None
    if workshop is None:
        raise NotFoundError(resource="Workshop", resource_id=workshop_id)
    return workshop


def get_enrollment(enrollment_id) -> Enrollment:
    enrollment = db.session.get(Enrollment, enrollment_id) if enrollment_id else None
    if enrollment is None:
        raise NotFoundError(resource="Enrollment", resource_id=enrollment_id)
    return enrollment


def get_waitlist_entry(entry_id) -> WaitlistEntry:
    entry = db.session.get(WaitlistEntry, entry_id) if entry_id else None
    if entry is None:
        raise NotFoundError(resource="WaitlistEntry", resource_id=entry_id)
    return entry


def enrollments_for_session(session_id):
    return (
        Enrollment.query.filter_by(gateway_session_id=session_id)
        .order_by(Enrollment.id)
        .all()
    )


def enrollments_for_payment_intent(payment_intent_id):
    return (
        Enrollment.query.filter_by(gateway_payment_intent_id=payment_intent_id)
        .order_by(Enrollment.id)
        .all()
    )


# ── Derived capacity ─────────────────────────────────────────────────────────

def completed_count(workshop_id) -> int:
    """Confirmed seats, counted from completed enrollments at read time."""
    return (
        db.session.query(func.count(Enrollment.id))
        .filter(Enrollment.workshop_id == workshop_id, Enrollment.status == "completed")
        .scalar()
    ) or 0


def remaining_spots(workshop: Workshop):
    """Open seats, or None when the workshop has unlimited capacity."""
    if not workshop.capacity or workshop.capacity <= 0:
        return None
    return max(0, workshop.capacity - completed_count(workshop.id))


def waitlist_count(workshop_id, status="waiting") -> int:
    return WaitlistEntry.query.filter_by(workshop_id=workshop_id, status=status).count()


def can_enroll(workshop: Workshop) -> tuple[bool, str]:
    """
    Return (allowed, reason) for a new enrollment in ``workshop``.

    A full workshop is still "allowed" when its waitlist is enabled; the
    reason tells the caller the customer will be waitlisted instead.
    """
    if not workshop.is_published or not workshop.checkout_enabled:
        return False, "Online enrollment is not available for this workshop."
    spots = remaining_spots(workshop)
    if spots is not None and spots <= 0:
        if workshop.waitlist_enabled:
            return True, "This workshop is full. You will be added to the waitlist."
        return False, "This workshop is full."
    return True, ""


def availability(workshop: Workshop) -> dict:
    allowed, reason = can_enroll(workshop)
    return {
        "workshop_id": workshop.id,
        "capacity": workshop.capacity,
        "completed_count": completed_count(workshop.id),
        "remaining_spots": remaining_spots(workshop),
        "can_enroll": allowed,
        "reason": reason,
        "waitlist_enabled": workshop.waitlist_enabled,
        "waitlist_count": waitlist_count(workshop.id),
    }


# ── Atomic status transitions ────────────────────────────────────────────────

def _compare_and_swap(model, resource, transitions, row_id, expected, target, fields):
    expected_states = (expected,) if isinstance(expected, str) else tuple(expected)
    for state in expected_states:
        if target not in transitions.get(state, []):
            raise InvalidTransition(resource, row_id, state, target)

    values = dict(fields)
    values["status"] = target
    count = (
        model.query
        .filter(model.id == row_id, model.status.in_(expected_states))
        .update(values, synchronize_session="fetch")
    )
    if count != 1:
        logger.info(
            "%s %s transition %s -> %s lost (status already moved)",
            resource, row_id, "/".join(expected_states), target,
        )
    return count == 1


def transition_enrollment(enrollment_id, expected, target, **fields) -> bool:
    """CAS ``expected`` → ``target`` on an Enrollment; returns True if this call won."""
    return _compare_and_swap(
        Enrollment, "Enrollment", ENROLLMENT_TRANSITIONS, enrollment_id, expected, target, fields,
    )


def transition_waitlist_entry(entry_id, expected, target, **fields) -> bool:
    """CAS ``expected`` → ``target`` on a WaitlistEntry; returns True if this call won."""
    return _compare_and_swap(
        WaitlistEntry, "WaitlistEntry", WAITLIST_TRANSITIONS, entry_id, expected, target, fields,
    )


def override_enrollment_status(enrollment: Enrollment, target: str, note: str = ""):
    """Administrator override: set any status, leaving an audit note."""
    previous = enrollment.status
    enrollment.status = target
    if target == "completed" and enrollment.completed_at is None:
        enrollment.completed_at = _utcnow()
    enrollment.append_note(
        f"Status changed by administrator: {previous} -> {target}" + (f" ({note})" if note else "")
    )
    logger.info("Enrollment %s status overridden %s -> %s", enrollment.id, previous, target)
    return previous


def annotate_partial_refund(enrollment_id, prior_amount, **fields) -> bool:
    """
    Record a partial refund on a ``completed`` enrollment.

    Conditional on the refund amount still being ``prior_amount``, so two
    deliveries of the same refund cannot both add to it.
    """
    q = Enrollment.query.filter(Enrollment.id == enrollment_id, Enrollment.status == "completed")
    if prior_amount is None:
        q = q.filter(Enrollment.refund_amount.is_(None))
    else:
        q = q.filter(Enrollment.refund_amount == prior_amount)
    return q.update(dict(fields), synchronize_session="fetch") == 1
