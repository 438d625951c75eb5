from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Payment(db.Model):
    """
    Manual bank-transfer payment for one order.

    STATUS: PENDING -> PAID -> REFUNDED, or PENDING -> FAILED.
    No money moves through the platform; PAID means an admin accepted the
    uploaded proof, REFUNDED records an offline refund.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    amount = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False, default="BANK_TRANSFER")

    # Evidence of transfer (stored externally)
    proof_url = db.Column(db.String(512), nullable=True)

    failure_reason = db.Column(db.String(255), nullable=True)
    refund_amount = db.Column(db.Integer, nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refund_reference = db.Column(db.String(128), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("Order", back_populates="payment")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "amount": self.amount,
            "method": self.method,
            "proof_url": self.proof_url,
            "failure_reason": self.failure_reason,
            "refund_amount": self.refund_amount,
            "refund_reason": self.refund_reason,
            "refund_reference": self.refund_reference,
            "paid_at": to_utc_z(self.paid_at),
            "failed_at": to_utc_z(self.failed_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
