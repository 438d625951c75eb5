# Overview: Service-layer operations for the audit trail of order/payment transitions.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditLog
from ..time_utils import utcnow


def append_audit(
    *,
    order_id: int,
    entity_type: str,
    action: str,
    payment_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    actor_user_id: int | None = None,
    reason: str | None = None,
    reference: str | None = None,
    amount: int | None = None,
    payload: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> AuditLog:
    """
    Append-only audit record.

    - Written inside the caller's transaction (flush, no commit).
    - actor_user_id None means the scheduler acted.
    """
    entry = AuditLog(
        order_id=order_id,
        payment_id=payment_id,
        entity_type=entity_type,
        action=action,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        actor_type="USER" if actor_user_id is not None else "SYSTEM",
        reason=reason,
        reference=reference,
        amount=amount,
        payload=json.dumps(payload, sort_keys=True) if payload else None,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def order_history(order_id: int) -> list[AuditLog]:
    """All audit records for an order and its payment, oldest first."""
    return (
        db.session.query(AuditLog)
        .filter_by(order_id=order_id)
        .order_by(AuditLog.occurred_at, AuditLog.id)
        .all()
    )
