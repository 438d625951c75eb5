# Overview: Service-layer operations for pickup verification tokens; issue, preview, redeem.

"""
Pickup Verification Tokens

A token is a random URL-safe string bound 1:1 to an order, issued the first
time the order becomes READY and rendered by the client as a QR code.

SECURITY NOTES:
- secrets.token_urlsafe(24): 32 characters, 192 bits of entropy.
- Issued once, never regenerated (a new token would invalidate QR codes
  already shown to the customer).
- Redemption is a single conditional UPDATE on
  (token, READY, NOT_PICKED_UP), so two concurrent scans cannot both win.
- Tokens of cancelled orders are orphaned, never reused.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..errors import AlreadyRedeemed, OrderNotReady, TokenNotFound
from ..extensions import db
from ..models import Order
from ..time_utils import to_venue, utcnow
from . import notification_service
from .batch_calendar import next_pickup_window, pickup_batch_for
from .concurrency import run_in_transaction
from .lifecycle_service import ORDER_READY, PICKUP_PICKED_UP


TOKEN_BYTES = 24
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{32,64}$")


def generate_token() -> str:
    """Cryptographically secure URL-safe token (32 chars for 24 bytes)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def is_valid_token_format(token: str | None) -> bool:
    return bool(token) and TOKEN_PATTERN.match(token) is not None


def verification_url(token: str) -> str:
    base = current_app.config["PICKUP_VERIFY_BASE_URL"].rstrip("/")
    return f"{base}/api/pickup/verify/{token}"


def _issue_locked(order: Order, *, now: datetime) -> str:
    """
    Bind a token to the order if it has none; return the order's token.

    Idempotent: the write only applies while the column is still NULL, so a
    concurrent issuer's token is kept and returned.
    """
    if order.pickup_verification_token:
        return order.pickup_verification_token

    token = generate_token()
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.pickup_verification_token.is_(None))
        .values(pickup_verification_token=token, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    if db.session.execute(stmt).rowcount == 1:
        return token

    db.session.refresh(order)
    return order.pickup_verification_token


def issue(order_id: int, *, now: datetime | None = None) -> str:
    """
    Return the order's pickup token, issuing it if missing.

    Raises:
        OrderNotReady: order is not READY (tokens only exist from READY on)
    """
    from .order_service import get_order

    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        if order.order_status != ORDER_READY:
            raise OrderNotReady(f"Order {order.order_number} is not ready for pickup yet")
        return _issue_locked(order, now=now)

    return run_in_transaction(_op)


def _classify_failure(token: str) -> Exception | None:
    order = db.session.query(Order).filter_by(pickup_verification_token=token).first()
    if order is None:
        return TokenNotFound("Invalid verification token")
    if order.pickup_status == PICKUP_PICKED_UP:
        return AlreadyRedeemed(f"Order {order.order_number} has already been picked up")
    if order.order_status != ORDER_READY:
        return OrderNotReady(f"Order {order.order_number} is {order.order_status}, not READY")
    return None


def lookup(token: str) -> Order:
    """
    Non-mutating preview of the order behind a token (staff scan, before
    confirming the handover).
    """
    if not is_valid_token_format(token):
        raise TokenNotFound("Invalid verification token")
    error = _classify_failure(token)
    if error is not None:
        raise error
    return db.session.query(Order).filter_by(pickup_verification_token=token).first()


def pickup_window_info(order: Order, now: datetime | None = None) -> dict:
    """Whether `now` is inside the order's pickup batch window (display only)."""
    now = now or utcnow()
    zone = current_app.config["VENUE_TIMEZONE"]
    if order.pickup_date is not None:
        # First window whose pickup has not ended at the assigned pickup start
        window = next_pickup_window(order.created_at, order.pickup_date, zone)
    else:
        window = pickup_batch_for(order.created_at, zone)
    local_now = to_venue(now, window.pickup_start.tzinfo)
    return {
        "batch_id": window.batch_id,
        "pickup_start": window.pickup_start.isoformat(),
        "pickup_end": window.pickup_end.isoformat(),
        "within_pickup_window": window.pickup_start <= local_now < window.pickup_end,
    }


def verify(token: str, *, actor=None, now: datetime | None = None) -> Order:
    """
    Redeem a pickup token: READY -> COMPLETED and NOT_PICKED_UP -> PICKED_UP.

    Raises:
        TokenNotFound: unknown or malformed token
        AlreadyRedeemed: token was already used (state unchanged)
        OrderNotReady: order not READY (e.g. cancelled after issue)
    """
    from .order_service import _complete_redeemed

    if not is_valid_token_format(token):
        raise TokenNotFound("Invalid verification token")
    now = now or utcnow()

    def _op():
        order = _complete_redeemed(token, actor=actor, now=now)
        if order is None:
            raise _classify_failure(token) or AlreadyRedeemed("Token was redeemed concurrently")
        note = notification_service.record_intent(
            recipient_id=order.user_id,
            order_id=order.id,
            event_type=notification_service.ORDER_COMPLETED,
            payload={
                "order_id": order.id,
                "order_number": order.order_number,
                "picked_up_at": now.isoformat(),
            },
            created_at=now,
        )
        return order, [note]

    order, notes = run_in_transaction(_op, attempts=1)
    current_app.logger.info("Order %s picked up (verified by user %s)", order.order_number, actor.id if actor else None)
    notification_service.deliver(notes)
    return order
