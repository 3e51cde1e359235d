"""
Workshop Enrollment Platform
Workshop Service — administrator catalogue maintenance.

Workshops are read-only to the enrollment pipeline; only this module
writes them. Pricing options are replaced wholesale on every edit that
carries a ``pricing_options`` list.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from app.core.exceptions import ValidationError
from app.models import db
from app.models.workshop import WORKSHOP_STATUSES, PricingOption, Workshop
from app.services import record_store

logger = logging.getLogger(__name__)


def _parse_datetime(value, field):
    if value in (None, ""):
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except (ValueError, TypeError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime.", details={field: "invalid"})
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_money(value, field):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number.", details={field: "invalid"})
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be zero or more.", details={field: "invalid"})
    return amount.quantize(Decimal("0.01"))


def _apply_fields(workshop, data):
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required", details={"title": "required"})
        workshop.title = title
    if "status" in data:
        if data["status"] not in WORKSHOP_STATUSES:
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(sorted(WORKSHOP_STATUSES))}",
                details={"status": data["status"]},
            )
        workshop.status = data["status"]
    if "capacity" in data:
        try:
            capacity = int(data["capacity"] or 0)
        except (TypeError, ValueError):
            raise ValidationError("capacity must be an integer.", details={"capacity": "invalid"})
        if capacity < 0:
            raise ValidationError("capacity must be zero (unlimited) or more.", details={"capacity": "invalid"})
        workshop.capacity = capacity
    for flag in ("checkout_enabled", "waitlist_enabled"):
        if flag in data:
            setattr(workshop, flag, bool(data[flag]))
    if "base_price" in data:
        workshop.base_price = _parse_money(data["base_price"] or 0, "base_price")
    if "location" in data:
        workshop.location = (data.get("location") or "").strip()
    if "starts_at" in data:
        workshop.starts_at = _parse_datetime(data["starts_at"], "starts_at")
    if "ends_at" in data:
        workshop.ends_at = _parse_datetime(data["ends_at"], "ends_at")
    starts_at, ends_at = record_store.as_utc(workshop.starts_at), record_store.as_utc(workshop.ends_at)
    if starts_at and ends_at and ends_at < starts_at:
        raise ValidationError("ends_at must not be before starts_at.", details={"ends_at": "invalid"})


def _replace_options(workshop, options):
    seen = set()
    parsed = []
    for position, raw in enumerate(options or []):
        option_id = (raw.get("id") or raw.get("option_id") or "").strip()
        if not option_id:
            raise ValidationError("Each pricing option needs an id.", details={"pricing_options": position})
        if option_id in seen:
            raise ValidationError(f"Duplicate pricing option id {option_id!r}.",
                                  details={"pricing_options": option_id})
        seen.add(option_id)
        parsed.append(PricingOption(
            option_id=option_id,
            label=(raw.get("label") or option_id).strip(),
            price=_parse_money(raw.get("price", 0), "price"),
            is_default=bool(raw.get("is_default")),
            position=position,
        ))
    workshop.pricing_options.clear()
    db.session.flush()
    workshop.pricing_options.extend(parsed)


def create_workshop(data):
    if not (data.get("title") or "").strip():
        raise ValidationError("title is required", details={"title": "required"})
    workshop = Workshop()
    _apply_fields(workshop, data)
    db.session.add(workshop)
    if "pricing_options" in data:
        _replace_options(workshop, data["pricing_options"])
    db.session.commit()
    logger.info("Workshop %s created: %s", workshop.id, workshop.title)
    return workshop


def update_workshop(workshop_id, data):
    workshop = record_store.get_workshop(workshop_id)
    _apply_fields(workshop, data)
    if "pricing_options" in data:
        _replace_options(workshop, data["pricing_options"])
    db.session.commit()
    logger.info("Workshop %s updated", workshop.id)
    return workshop


def list_workshops(published_only=False):
    q = Workshop.query
    if published_only:
        q = q.filter_by(status="published")
    return q.order_by(Workshop.starts_at.asc(), Workshop.id.asc()).all()
