from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class Notification(db.Model):
    """
    Persisted notification intent (doubles as the in-app inbox entry).

    The scheduler reads these rows to decide whether a reminder was already
    produced for an order, so rows are written in the same transaction as the
    decision that caused them. Delivery happens after commit.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_order_type_created", "order_id", "event_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    event_type = db.Column(db.String(48), nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False, default="{}")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_error = db.Column(db.String(255), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    @property
    def payload_dict(self) -> dict:
        return json.loads(self.payload) if self.payload else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "payload": self.payload_dict,
            "created_at": to_utc_z(self.created_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "delivery_error": self.delivery_error,
            "is_read": self.is_read,
        }
