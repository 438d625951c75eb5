# Overview: Service-layer operations for the order state machine; checkout and guarded transitions.

"""
Order Lifecycle Service

Every status change goes through _transition_order(), which:
1. asks lifecycle_service.require_transition() with the freshly read state,
2. writes with compare_and_set() on that same state,
3. appends the audit record and notification intent in the same transaction.

Public functions commit and then deliver notifications. The *_locked helpers
never commit; orchestration (workflow_service) and payment_service compose
them inside a single transaction.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from flask import current_app
from sqlalchemy import update

from ..errors import ConcurrencyConflict, InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Bundle, Order, OrderItem, Payment
from ..time_utils import utcnow
from . import audit_service, notification_service
from .batch_calendar import next_pickup_window, pickup_date_utc
from .concurrency import compare_and_set, next_order_number, run_in_transaction
from .lifecycle_service import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_CONFIRMED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_READY,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    PICKUP_NOT_PICKED_UP,
    PICKUP_PICKED_UP,
    TransitionContext,
    actor_role_for,
    require_reason,
    require_transition,
)


MAX_ITEM_QUANTITY = 100


# =============================================================================
# LOOKUPS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order_for_actor(order_id: int, actor) -> Order:
    """Customers only see their own orders; staff see all."""
    order = get_order(order_id)
    if not actor.is_staff and order.user_id != actor.id:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders_for_user(user_id: int, *, limit: int = 100) -> list[Order]:
    return (
        db.session.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )


def venue_zone() -> ZoneInfo:
    return ZoneInfo(current_app.config["VENUE_TIMEZONE"])


def _payment_status(order: Order) -> str | None:
    payment = db.session.query(Payment).filter_by(order_id=order.id).first()
    return payment.status if payment else None


def _actor_id(actor) -> int | None:
    return actor.id if actor is not None else None


def _order_payload(order: Order, **extra) -> dict:
    payload = {
        "order_id": order.id,
        "order_number": order.order_number,
        "order_status": order.order_status,
        "total_amount": order.total_amount,
    }
    payload.update(extra)
    return payload


# =============================================================================
# CHECKOUT
# =============================================================================

def create_order(user_id: int, items: list[dict], *, notes: str | None = None, now: datetime | None = None) -> Order:
    """
    Place an order: Order PENDING + Payment PENDING (bank transfer).

    items: [{"bundle_id": int, "quantity": int}, ...]. Prices come from the
    bundle, never from the client.

    Raises:
        ValidationError: empty cart, unknown/inactive bundle, bad quantity
    """
    if not items:
        raise ValidationError("Order must contain at least one item")

    lines = []
    for raw in items:
        bundle_id = raw.get("bundle_id")
        quantity = raw.get("quantity", 1)
        if not isinstance(quantity, int) or isinstance(quantity, bool) or not 1 <= quantity <= MAX_ITEM_QUANTITY:
            raise ValidationError(f"quantity must be an integer between 1 and {MAX_ITEM_QUANTITY}")
        bundle = db.session.query(Bundle).filter_by(id=bundle_id).first()
        if bundle is None or not bundle.is_active:
            raise ValidationError(f"Bundle {bundle_id} is not available")
        lines.append((bundle, quantity))

    now = now or utcnow()

    def _op():
        total = sum(bundle.price * quantity for bundle, quantity in lines)
        order = Order(
            order_number=next_order_number(),
            user_id=user_id,
            order_status=ORDER_PENDING,
            pickup_status=PICKUP_NOT_PICKED_UP,
            total_amount=total,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        for bundle, quantity in lines:
            db.session.add(OrderItem(
                order_id=order.id,
                bundle_id=bundle.id,
                quantity=quantity,
                unit_price=bundle.price,
                total_price=bundle.price * quantity,
            ))

        payment = Payment(
            order_id=order.id,
            status=PAYMENT_PENDING,
            amount=total,
            method="BANK_TRANSFER",
            created_at=now,
            updated_at=now,
        )
        db.session.add(payment)
        db.session.flush()

        audit_service.append_audit(
            order_id=order.id,
            payment_id=payment.id,
            entity_type="ORDER",
            action="CREATED",
            to_status=ORDER_PENDING,
            actor_user_id=user_id,
            amount=total,
            occurred_at=now,
        )
        note = notification_service.record_intent(
            recipient_id=user_id,
            order_id=order.id,
            event_type=notification_service.ORDER_CREATED,
            payload=_order_payload(order),
            created_at=now,
        )
        return order, [note]

    order, notes_out = run_in_transaction(_op)
    current_app.logger.info("Order %s created for user %s (total %s)", order.order_number, user_id, order.total_amount)
    notification_service.deliver(notes_out)
    return order


# =============================================================================
# GUARDED TRANSITIONS (no commit)
# =============================================================================

def _transition_order(
    order: Order,
    requested: str,
    *,
    actor,
    now: datetime,
    context: TransitionContext | None = None,
    values: dict | None = None,
    action: str | None = None,
    reason: str | None = None,
    audit_payload: dict | None = None,
) -> str:
    """
    Apply one guarded order transition inside the current transaction.

    Returns the previous status. Raises InvalidTransition (state untouched) or
    ConcurrencyConflict (someone else changed the row first).
    """
    current = order.order_status
    if context is None:
        context = TransitionContext(payment_status=_payment_status(order), actor_role=actor_role_for(actor))
    require_transition(current, requested, context)

    changes = {"order_status": requested, "updated_at": now}
    if values:
        changes.update(values)

    if not compare_and_set(Order, order.id, Order.order_status, current, changes):
        raise ConcurrencyConflict(f"Order {order.order_number} changed concurrently; expected {current}")

    audit_service.append_audit(
        order_id=order.id,
        entity_type="ORDER",
        action=action or requested,
        from_status=current,
        to_status=requested,
        actor_user_id=_actor_id(actor),
        reason=reason,
        payload=audit_payload,
        occurred_at=now,
    )
    return current


def _guard_payment_status(order: Order, allowed: tuple[str, ...], now: datetime) -> None:
    """
    Re-assert the payment status a guard relied on, as part of this
    transaction, so a concurrent payment transition cannot slip between the
    check and the order write.
    """
    payment = db.session.query(Payment).filter_by(order_id=order.id).first()
    if payment is None:
        return
    if not compare_and_set(Payment, payment.id, Payment.status, allowed, {"updated_at": now}):
        raise ConcurrencyConflict(f"Payment for order {order.order_number} changed concurrently")


def _confirm_locked(order: Order, *, actor, now: datetime) -> list:
    _transition_order(order, ORDER_CONFIRMED, actor=actor, now=now)
    _guard_payment_status(order, (PAYMENT_PAID,), now)
    return [notification_service.record_intent(
        recipient_id=order.user_id,
        order_id=order.id,
        event_type=notification_service.ORDER_CONFIRMED,
        payload=_order_payload(order),
        created_at=now,
    )]


def _cancel_locked(order: Order, *, actor, now: datetime, reason: str | None = None) -> list:
    if actor is not None and not actor.is_staff and order.user_id != actor.id:
        raise NotFoundError(f"Order {order.id} not found")

    _transition_order(order, ORDER_CANCELLED, actor=actor, now=now, reason=reason)
    payment_status = _payment_status(order)
    if payment_status is not None:
        # Any status but PAID; a concurrent markPaid must not slip in
        _guard_payment_status(order, (PAYMENT_PENDING, PAYMENT_FAILED, PAYMENT_REFUNDED), now)
    return [notification_service.record_intent(
        recipient_id=order.user_id,
        order_id=order.id,
        event_type=notification_service.ORDER_CANCELLED,
        payload=_order_payload(order, reason=reason),
        created_at=now,
    )]


def _complete_redeemed(token: str, *, actor, now: datetime) -> Order | None:
    """
    READY -> COMPLETED, reachable only from pickup token redemption.

    One conditional UPDATE keyed on the token, the READY state and
    NOT_PICKED_UP: of two concurrent redemptions exactly one matches.
    Returns the order, or None if nothing matched (caller classifies why).
    """
    order = db.session.query(Order).filter_by(pickup_verification_token=token).first()
    if order is None:
        return None

    context = TransitionContext(actor_role=actor_role_for(actor), via_redemption=True)
    if order.order_status != ORDER_READY or order.pickup_status != PICKUP_NOT_PICKED_UP:
        return None
    require_transition(order.order_status, ORDER_COMPLETED, context)

    stmt = (
        update(Order)
        .where(
            Order.id == order.id,
            Order.pickup_verification_token == token,
            Order.order_status == ORDER_READY,
            Order.pickup_status == PICKUP_NOT_PICKED_UP,
        )
        .values(
            order_status=ORDER_COMPLETED,
            pickup_status=PICKUP_PICKED_UP,
            picked_up_at=now,
            picked_up_by_user_id=_actor_id(actor),
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if db.session.execute(stmt).rowcount != 1:
        return None

    audit_service.append_audit(
        order_id=order.id,
        entity_type="PICKUP",
        action="PICKED_UP",
        from_status=ORDER_READY,
        to_status=ORDER_COMPLETED,
        actor_user_id=_actor_id(actor),
        occurred_at=now,
    )
    return order


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def confirm(order_id: int, *, actor=None, now: datetime | None = None) -> Order:
    """
    PENDING -> CONFIRMED. Requires the payment to be PAID.

    Raises:
        NotFoundError, InvalidTransition, ConcurrencyConflict
    """
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        return order, _confirm_locked(order, actor=actor, now=now)

    order, notes = run_in_transaction(_op)
    current_app.logger.info("Order %s confirmed", order.order_number)
    notification_service.deliver(notes)
    return order


def start_preparation(order_id: int, *, actor, estimated_time: str | None = None, now: datetime | None = None) -> Order:
    """
    PENDING/CONFIRMED -> PROCESSING.

    Idempotent: an order already PROCESSING is returned unchanged and no
    second notification is produced.
    """
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        if order.order_status == ORDER_PROCESSING:
            return order, []

        _transition_order(
            order,
            ORDER_PROCESSING,
            actor=actor,
            now=now,
            values={"estimated_ready": estimated_time} if estimated_time else None,
            action="PREPARATION_STARTED",
        )
        _guard_payment_status(order, (PAYMENT_PAID,), now)
        note = notification_service.record_intent(
            recipient_id=order.user_id,
            order_id=order.id,
            event_type=notification_service.ORDER_PREPARATION_STARTED,
            payload=_order_payload(order, estimated_time=estimated_time),
            created_at=now,
        )
        return order, [note]

    order, notes = run_in_transaction(_op)
    if notes:
        current_app.logger.info("Order %s preparation started", order.order_number)
    notification_service.deliver(notes)
    return order


def mark_delayed(
    order_id: int,
    reason: str,
    *,
    actor,
    new_estimated_time: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Stay in PROCESSING and tell the customer why it is taking longer.

    Raises:
        ValidationError: blank reason (checked before any state lookup)
        InvalidTransition: order is not PROCESSING
    """
    reason = require_reason(reason)
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        if order.order_status != ORDER_PROCESSING:
            raise InvalidTransition(f"Only PROCESSING orders can be delayed (order is {order.order_status})")

        changes = {"notes": f"Delayed: {reason}", "updated_at": now}
        if new_estimated_time:
            changes["estimated_ready"] = new_estimated_time
        if not compare_and_set(Order, order.id, Order.order_status, ORDER_PROCESSING, changes):
            raise ConcurrencyConflict(f"Order {order.order_number} changed concurrently")

        audit_service.append_audit(
            order_id=order.id,
            entity_type="ORDER",
            action="DELAYED",
            from_status=ORDER_PROCESSING,
            to_status=ORDER_PROCESSING,
            actor_user_id=_actor_id(actor),
            reason=reason,
            occurred_at=now,
        )
        note = notification_service.record_intent(
            recipient_id=order.user_id,
            order_id=order.id,
            event_type=notification_service.ORDER_DELAYED,
            payload=_order_payload(order, reason=reason, new_estimated_time=new_estimated_time),
            created_at=now,
        )
        return order, [note]

    order, notes = run_in_transaction(_op)
    current_app.logger.info("Order %s delayed: %s", order.order_number, reason)
    notification_service.deliver(notes)
    return order


def mark_ready(
    order_id: int,
    pickup_location: str,
    pickup_hours: str,
    *,
    actor,
    now: datetime | None = None,
) -> Order:
    """
    PROCESSING -> READY.

    Assigns pickup_date from the batch calendar (the batch the order was
    placed in, or the next one whose pickup window is still open) and issues
    the pickup token if the order has none.
    """
    from .pickup_service import _issue_locked, verification_url

    pickup_location = require_reason(pickup_location, field="pickup_location")
    pickup_hours = require_reason(pickup_hours, field="pickup_hours")
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        window = next_pickup_window(order.created_at, now, venue_zone())
        _transition_order(
            order,
            ORDER_READY,
            actor=actor,
            now=now,
            values={
                "pickup_location": pickup_location,
                "pickup_hours": pickup_hours,
                "pickup_date": pickup_date_utc(window),
            },
            audit_payload={"batch_id": window.batch_id, "pickup_start": window.pickup_start.isoformat()},
        )
        token = _issue_locked(order, now=now)
        note = notification_service.record_intent(
            recipient_id=order.user_id,
            order_id=order.id,
            event_type=notification_service.ORDER_READY,
            payload=_order_payload(
                order,
                pickup_location=pickup_location,
                pickup_hours=pickup_hours,
                pickup_start=window.pickup_start.isoformat(),
                verification_url=verification_url(token),
            ),
            created_at=now,
        )
        return order, [note]

    order, notes = run_in_transaction(_op)
    current_app.logger.info("Order %s ready for pickup at %s", order.order_number, order.pickup_date)
    notification_service.deliver(notes)
    return order


def cancel(order_id: int, *, actor, reason: str | None = None, now: datetime | None = None) -> Order:
    """
    PENDING -> CANCELLED (customer, staff) or CONFIRMED -> CANCELLED (staff).

    Raises:
        PaidOrderNotCancellable: payment is PAID; refund first
        InvalidTransition: any other illegal state
    """
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        return order, _cancel_locked(order, actor=actor, now=now, reason=reason)

    order, notes = run_in_transaction(_op)
    current_app.logger.info("Order %s cancelled by user %s", order.order_number, _actor_id(actor))
    notification_service.deliver(notes)
    return order
