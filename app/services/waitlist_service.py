"""
Workshop Enrollment Platform
Waitlist Coordinator — queueing, promotion and conversion of waitlist entries.

Promotion runs when a seat frees up (full refund, cancellation, expired
claim). It walks the workshop's ``waiting`` entries FIFO
(created_at, then id) and moves at most as many entries to ``notified``
as there are seats that are both freed and not already held by an
outstanding claim. Each promoted entry gets a fresh claim token and a
``waitlist_notified`` notification carrying the claim URL.

Usage:
    from app.services import waitlist_service

    waitlist_service.join(workshop_id, "ada@example.com", "Ada")
    waitlist_service.promote_next(workshop_id)
"""

import logging
from datetime import datetime, timezone
from urllib.parse import urlencode

from flask import current_app

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.waitlist import ACTIVE_WAITLIST_STATUSES, WaitlistEntry
from app.services import record_store, token_service
from app.services.account_service import validated_email
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def claim_url(entry: WaitlistEntry, token: str) -> str:
    """Claim link: the workshop page with the two correlation parameters."""
    site = current_app.config.get("SITE_URL", "").rstrip("/")
    query = urlencode({"waitlist_token": token, "entry_id": entry.id})
    return f"{site}/workshops/{entry.workshop_id}/?{query}"


def _waiting_fifo(workshop_id):
    return (
        WaitlistEntry.query
        .filter_by(workshop_id=workshop_id, status="waiting")
        .order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
    )


def held_claims(workshop_id) -> int:
    """Entries currently holding a seat via an unexpired claim."""
    now = _utcnow()
    return (
        WaitlistEntry.query
        .filter(
            WaitlistEntry.workshop_id == workshop_id,
            WaitlistEntry.status.in_(("notified", "claimed")),
            WaitlistEntry.token_expires_at > now,
        )
        .count()
    )


# ── Joining ──────────────────────────────────────────────────────────────────

def position(workshop_id, email):
    """1-based position among waiting entries, or None if not waiting."""
    email = (email or "").strip().lower()
    for idx, entry in enumerate(_waiting_fifo(workshop_id).all(), start=1):
        if entry.customer_email == email:
            return idx
    return None


def join(workshop_id, email, name="", phone=""):
    """
    Add a customer to a workshop's waitlist.

    Returns:
        dict with ``entry``, ``position`` and ``created`` (False when the
        email already holds an active entry; its position is returned).
    """
    email = validated_email(email)
    workshop = record_store.get_workshop(workshop_id)
    if not workshop.is_published:
        raise NotFoundError(resource="Workshop", resource_id=workshop_id)
    if not workshop.waitlist_enabled:
        raise ValidationError(
            "The waitlist is not available for this workshop.", details={"workshop_id": workshop_id},
        )

    existing = (
        WaitlistEntry.query
        .filter(
            WaitlistEntry.workshop_id == workshop.id,
            WaitlistEntry.customer_email == email,
            WaitlistEntry.status.in_(ACTIVE_WAITLIST_STATUSES),
        )
        .first()
    )
    if existing is not None:
        return {"entry": existing, "position": position(workshop.id, email), "created": False}

    entry = WaitlistEntry(
        workshop_id=workshop.id,
        customer_email=email,
        customer_name=(name or "").strip(),
        customer_phone=(phone or "").strip(),
        status="waiting",
    )
    db.session.add(entry)
    db.session.flush()
    pos = position(workshop.id, email)
    req = NotificationService.enqueue(
        "waitlist_joined",
        recipient=email,
        context={
            "customer_name": entry.customer_name,
            "workshop_title": workshop.title,
            "workshop_id": workshop.id,
            "position": pos,
        },
        waitlist_entry_id=entry.id,
    )
    db.session.commit()
    NotificationService.deliver([req])

    logger.info("Waitlist join workshop=%s entry=%s position=%s", workshop.id, entry.id, pos)
    return {"entry": entry, "position": pos, "created": True}


# ── Promotion ────────────────────────────────────────────────────────────────

def _notify(entry: WaitlistEntry):
    """Issue a token for an entry that was just moved to ``notified``; no commit."""
    token, expires_at = token_service.issue(entry.id, commit=False)
    url = claim_url(entry, token)
    req = NotificationService.enqueue(
        "waitlist_notified",
        recipient=entry.customer_email,
        context={
            "customer_name": entry.customer_name,
            "workshop_title": entry.workshop.title if entry.workshop else "",
            "workshop_id": entry.workshop_id,
            "entry_id": entry.id,
            "expires_at": expires_at.isoformat(),
        },
        secret_context={"claim_url": url},
        waitlist_entry_id=entry.id,
    )
    return token, req


def promote_next(workshop_id, seats_freed=1) -> list[tuple[WaitlistEntry, str]]:
    """
    Offer freed seats to the next waiting entries.

    Returns:
        [(entry, plaintext token)] for every entry notified by this call.
    """
    workshop = record_store.get_workshop(workshop_id)
    if not workshop.waitlist_enabled or seats_freed <= 0:
        return []

    spots = record_store.remaining_spots(workshop)
    offer = seats_freed if spots is None else min(seats_freed, spots - held_claims(workshop.id))
    if offer <= 0:
        logger.info("No seat to offer on workshop=%s (spots=%s)", workshop.id, spots)
        return []

    promoted, pending = [], []
    for candidate in _waiting_fifo(workshop.id).all():
        if len(promoted) >= offer:
            break
        if not record_store.transition_waitlist_entry(
            candidate.id, "waiting", "notified", notified_at=_utcnow(),
        ):
            continue
        token, req = _notify(candidate)
        promoted.append((candidate, token))
        pending.append(req)

    db.session.commit()
    NotificationService.deliver(pending)

    for entry, _ in promoted:
        logger.info("Waitlist entry %s notified for workshop=%s", entry.id, workshop.id)
    return promoted


def on_seat_freed(workshop_id, seats=1):
    """Hook for refund/cancellation paths."""
    return promote_next(workshop_id, seats_freed=seats)


def notify_entry(entry_id):
    """Administrator action: (re-)offer a seat to a specific waiting or expired entry."""
    entry = record_store.get_waitlist_entry(entry_id)
    if not record_store.transition_waitlist_entry(
        entry.id, (entry.status,), "notified", notified_at=_utcnow(),
    ):
        raise ValidationError("This entry changed while being notified; reload and retry.")
    token, req = _notify(entry)
    db.session.commit()
    NotificationService.deliver([req])
    logger.info("Waitlist entry %s notified manually", entry.id)
    return entry, token


def cancel_entry(entry_id):
    """Cancel an entry; a cancelled outstanding claim releases its seat to the next in line."""
    entry = record_store.get_waitlist_entry(entry_id)
    previous = entry.status
    if not record_store.transition_waitlist_entry(entry.id, (previous,), "cancelled"):
        raise ValidationError("This entry changed while being cancelled; reload and retry.")
    db.session.commit()
    if previous in ("notified", "claimed"):
        promote_next(entry.workshop_id)
    return entry


def expire_stale_claims() -> int:
    """Expire outstanding claims past their expiry and re-offer those seats."""
    now = _utcnow()
    stale = (
        WaitlistEntry.query
        .filter(WaitlistEntry.status == "notified", WaitlistEntry.token_expires_at <= now)
        .all()
    )
    freed: dict[int, int] = {}
    for entry in stale:
        if record_store.transition_waitlist_entry(entry.id, "notified", "expired"):
            freed[entry.workshop_id] = freed.get(entry.workshop_id, 0) + 1
    db.session.commit()

    for workshop_id, seats in freed.items():
        promote_next(workshop_id, seats_freed=seats)
    if freed:
        logger.info("Expired %d stale claim(s) across %d workshop(s)", sum(freed.values()), len(freed))
    return sum(freed.values())


# ── Conversion ───────────────────────────────────────────────────────────────

def claim_details(token, entry_id) -> dict:
    """Prefill data for the claim landing page; the token is checked, not consumed."""
    validated = token_service.validate(token, entry_id, consume=False)
    entry = record_store.get_waitlist_entry(validated)
    return {
        "entry_id": entry.id,
        "workshop_id": entry.workshop_id,
        "workshop_title": entry.workshop.title if entry.workshop else "",
        "customer_name": entry.customer_name,
        "customer_email": entry.customer_email,
        "customer_phone": entry.customer_phone,
        "token_expires_at": entry.token_expires_at.isoformat() if entry.token_expires_at else None,
    }


def convert_manually(entry_id, enrollment_id):
    """Administrator conversion of a notified/claimed entry (no token); no commit."""
    return record_store.transition_waitlist_entry(
        entry_id, ("notified", "claimed"), "converted",
        enrollment_id=enrollment_id, converted_at=_utcnow(),
    )


def list_entries(workshop_id, status=""):
    q = WaitlistEntry.query.filter_by(workshop_id=workshop_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc()).all()
