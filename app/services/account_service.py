"""
Workshop Enrollment Platform
Account Service — create or link customer accounts by email.

Email is the stable correlation key before an enrollment is linked to an
account. Linking is idempotent: an enrollment that already has an
account is left alone, and an email never produces two accounts (the
unique constraint on ``accounts.email`` settles concurrent creation).
A newly created account gets one ``account_welcome`` notification.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ValidationError
from app.models import db
from app.models.enrollment import Account, Enrollment
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)


def normalize_email(email):
    return (email or "").strip().lower()


def validated_email(email):
    """Return the normalized address or raise ValidationError."""
    if not (email or "").strip():
        raise ValidationError("A valid email address is required.", details={"email": "required"})
    try:
        result = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("A valid email address is required.", details={"email": str(exc)})
    return result.normalized.lower()


def find_by_email(email):
    email = normalize_email(email)
    if not email:
        return None
    return Account.query.filter_by(email=email).first()


def get_or_create_account(email, name=""):
    """
    Return the account for ``email``, creating it on first sight.

    Flushes but does not commit; the caller's transaction decides. A new
    account also queues its welcome notice (see ``pop_welcome_notice``).
    """
    email = validated_email(email)

    account = find_by_email(email)
    if account is not None:
        return account

    account = Account(email=email, display_name=(name or "").strip())
    db.session.add(account)
    try:
        db.session.flush()
    except IntegrityError:
        # Created concurrently by another delivery; use theirs.
        db.session.rollback()
        account = find_by_email(email)
        if account is None:
            raise
        return account
    site = current_app.config.get("SITE_URL", "").rstrip("/")
    account._welcome_notice = NotificationService.enqueue(
        "account_welcome",
        recipient=email,
        context={
            "customer_name": account.display_name,
            "customer_email": email,
            "account_url": f"{site}/account",
        },
    )
    logger.info("Account created id=%s email=%s", account.id, email)
    return account


def pop_welcome_notice(account):
    """The welcome request queued when ``account`` was created in this process, handed out once."""
    notice = getattr(account, "_welcome_notice", None)
    account._welcome_notice = None
    return notice


def link_enrollment(enrollment: Enrollment, account: Account) -> bool:
    """Attach ``enrollment`` to ``account`` unless it is already linked."""
    if enrollment.account_id is not None:
        return False
    enrollment.account_id = account.id
    return True


def enrollments_for_account(account_id, status=""):
    q = Enrollment.query.filter_by(account_id=account_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Enrollment.created_at.desc(), Enrollment.id.desc()).all()
