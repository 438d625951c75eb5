from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Bundle(db.Model):
    """Pre-order product bundle. Managed elsewhere; orders only reference it."""
    __tablename__ = "bundles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False)  # whole currency units (IDR)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
