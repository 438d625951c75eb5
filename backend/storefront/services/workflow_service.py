# Overview: Service-layer orchestration of use cases that span the order and payment state machines.

"""
Cross-Machine Use Cases

The order and payment state machines are independent; the places where one
drives the other are listed here and nowhere else:

- confirm_order:                payment PENDING->PAID (if proof), order PENDING->CONFIRMED
- expire_unpaid_order:          payment PENDING->FAILED, order PENDING->CANCELLED
- refund_and_keep_order_record: payment PAID->REFUNDED, order cancelled if still cancellable

Each use case is one transaction: either every transition applies or none.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import InvalidTransition
from ..time_utils import utcnow
from . import notification_service
from .concurrency import run_in_transaction
from .lifecycle_service import (
    ORDER_CANCELLED,
    ORDER_PENDING,
    PAYMENT_PENDING,
    TransitionContext,
    actor_role_for,
    can_transition,
)
from .order_service import _cancel_locked, _confirm_locked, get_order
from .payment_service import (
    _mark_failed_locked,
    _mark_paid_locked,
    _refund_locked,
    get_payment_for_order,
    validate_refund_input,
)


EXPIRY_REASON = "Payment expired - auto-cancelled"


def confirm_order(order_id: int, *, actor, now: datetime | None = None):
    """
    Accept the transfer (if still PENDING) and confirm the order.

    Raises:
        ValidationError: payment PENDING without proof
        InvalidTransition: order not PENDING, payment FAILED/REFUNDED
    """
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        payment = get_payment_for_order(order_id)
        notes = []
        if payment.status == PAYMENT_PENDING:
            notes.extend(_mark_paid_locked(payment, actor=actor, now=now))
        notes.extend(_confirm_locked(order, actor=actor, now=now))
        return order, notes

    order, notes = run_in_transaction(_op)
    current_app.logger.info("Order %s payment accepted and confirmed", order.order_number)
    notification_service.deliver(notes)
    return order


def expire_unpaid_order(order_id: int, *, now: datetime | None = None):
    """
    Scheduler use case: the payment deadline passed without payment.

    Uses the same guarded transitions as an admin rejecting the payment.
    Raises InvalidTransition if the order is no longer PENDING/unpaid (e.g.
    an admin confirmed it between the scan and this call).
    """
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        payment = get_payment_for_order(order_id)
        if order.order_status != ORDER_PENDING or payment.status != PAYMENT_PENDING:
            raise InvalidTransition(
                f"Order {order.order_number} is no longer awaiting payment "
                f"({order.order_status}/{payment.status})"
            )
        notes = _mark_failed_locked(
            payment,
            EXPIRY_REASON,
            actor=None,
            now=now,
            event_type=notification_service.PAYMENT_EXPIRED,
        )
        return order, notes

    order, notes = run_in_transaction(_op)
    current_app.logger.info("Order %s expired: payment FAILED, order CANCELLED", order.order_number)
    failures = notification_service.deliver(notes)
    return order, failures


def refund_and_keep_order_record(
    order_id: int,
    reason: str,
    amount: int,
    reference: str | None = None,
    *,
    actor,
    now: datetime | None = None,
):
    """
    Refund the order's payment. The order row is kept: cancelled if it is
    still PENDING/CONFIRMED, otherwise left in its current state.
    """
    reason, amount, reference = validate_refund_input(reason, amount, reference)
    now = now or utcnow()

    def _op():
        order = get_order(order_id)
        payment = get_payment_for_order(order_id)
        notes = _refund_locked(payment, reason, amount, reference, actor=actor, now=now)
        context = TransitionContext(payment_status=payment.status, actor_role=actor_role_for(actor))
        if can_transition(order.order_status, ORDER_CANCELLED, context):
            notes.extend(_cancel_locked(order, actor=actor, now=now, reason=f"Refunded: {reason}"))
        return order, notes

    order, notes = run_in_transaction(_op)
    current_app.logger.info("Order %s refunded (%s); order kept as %s", order.order_number, amount, order.order_status)
    notification_service.deliver(notes)
    return order
