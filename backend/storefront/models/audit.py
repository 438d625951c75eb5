from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only record of order/payment transitions.

    Written in the same DB transaction as the transition it records.
    IMMUTABLE: Never update or delete.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    entity_type = db.Column(db.String(16), nullable=False)  # ORDER, PAYMENT, PICKUP
    action = db.Column(db.String(32), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    actor_type = db.Column(db.String(16), nullable=False, default="USER")  # USER, SYSTEM

    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(128), nullable=True)
    amount = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "entity_type": self.entity_type,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_user_id": self.actor_user_id,
            "actor_type": self.actor_type,
            "reason": self.reason,
            "reference": self.reference,
            "amount": self.amount,
            "payload": json.loads(self.payload) if self.payload else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }
