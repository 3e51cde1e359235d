"""
Workshop Enrollment Platform
Processed gateway event ledger.

Pure idempotency metadata: the ids of gateway events whose effects have
been applied. Bounded to the most recent N rows (``PROCESSED_EVENT_LIMIT``),
trimmed oldest-first on every insert.
"""

from datetime import datetime, timezone

from app.models import db


class ProcessedEvent(db.Model):
    __tablename__ = "processed_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, unique=True)
    event_type = db.Column(db.String(100), default="")
    processed_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<ProcessedEvent {self.event_id}>"
