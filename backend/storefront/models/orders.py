from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Pre-order placed at checkout and collected at the venue.

    order_status and pickup_status are only ever written through the guarded
    transition functions in services/order_service.py and
    services/pickup_service.py (conditional UPDATEs). Orders are never
    deleted; CANCELLED is terminal.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "order_status", "created_at"),
        db.Index("ix_orders_status_pickup_date", "order_status", "pickup_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # PENDING, CONFIRMED, PROCESSING, READY, COMPLETED, CANCELLED
    order_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    # NOT_PICKED_UP, PICKED_UP
    pickup_status = db.Column(db.String(16), nullable=False, default="NOT_PICKED_UP")

    total_amount = db.Column(db.Integer, nullable=False)

    # Assigned when the order becomes READY
    pickup_date = db.Column(db.DateTime(timezone=True), nullable=True)
    pickup_location = db.Column(db.String(255), nullable=True)
    pickup_hours = db.Column(db.String(64), nullable=True)
    pickup_verification_token = db.Column(db.String(64), nullable=True, unique=True)
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    picked_up_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    estimated_ready = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("orders", lazy=True))
    payment = db.relationship("Payment", back_populates="order", uselist=False)

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "order_status": self.order_status,
            "pickup_status": self.pickup_status,
            "total_amount": self.total_amount,
            "pickup_date": to_utc_z(self.pickup_date),
            "pickup_location": self.pickup_location,
            "pickup_hours": self.pickup_hours,
            "picked_up_at": to_utc_z(self.picked_up_at),
            "estimated_ready": self.estimated_ready,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "payment": self.payment.to_dict() if self.payment else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Bundle line on an order; prices are copied at checkout."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    bundle_id = db.Column(db.Integer, db.ForeignKey("bundles.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))
    bundle = db.relationship("Bundle")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "bundle_id": self.bundle_id,
            "bundle_name": self.bundle.name if self.bundle else None,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
        }


class OrderSequence(db.Model):
    """
    Atomic sequence for human-readable order numbers.

    WHY: Prevent two concurrent checkouts from getting the same number.
    """
    __tablename__ = "order_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
