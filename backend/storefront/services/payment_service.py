# Overview: Service-layer operations for the payment state machine; proof, paid, failed, refund.

"""
Payment Lifecycle Service

WHY: Customers pay by manual bank transfer and upload proof. Admins accept
(PAID) or reject (FAILED) it; refunds are settled offline and recorded here.
The platform never moves money.

STATE MACHINE:
    PENDING -> PAID -> REFUNDED
    PENDING -> FAILED

DESIGN PRINCIPLES:
- Validation (missing proof, blank reason, bad amount) is checked before
  any state is read or written.
- Status writes are compare-and-set on the status that was checked.
- A FAILED payment on a PENDING order cancels the order in the same commit.
- Refunds keep reason/reference/amount in the audit trail for reconciliation.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import ConcurrencyConflict, InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, Payment
from ..time_utils import utcnow
from . import audit_service, notification_service
from .concurrency import compare_and_set, run_in_transaction
from .lifecycle_service import (
    ORDER_CANCELLED,
    ORDER_PENDING,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    require_payment_transition,
    require_reason,
)


MIN_REFUND_REASON_LENGTH = 5
MAX_PROOF_URL_LENGTH = 512


def get_payment(payment_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(id=payment_id).first()
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def get_payment_for_order(order_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(order_id=order_id).first()
    if payment is None:
        raise NotFoundError(f"Order {order_id} has no payment")
    return payment


def _actor_id(actor) -> int | None:
    return actor.id if actor is not None else None


def _payload(payment: Payment, order: Order, **extra) -> dict:
    payload = {
        "order_id": order.id,
        "order_number": order.order_number,
        "payment_id": payment.id,
        "amount": payment.amount,
    }
    payload.update(extra)
    return payload


def _transition_payment(
    payment: Payment,
    requested: str,
    *,
    actor,
    now: datetime,
    values: dict | None = None,
    reason: str | None = None,
    reference: str | None = None,
    amount: int | None = None,
) -> str:
    """Guarded payment transition inside the current transaction (no commit)."""
    current = payment.status
    require_payment_transition(current, requested)

    changes = {"status": requested, "updated_at": now}
    if values:
        changes.update(values)

    if not compare_and_set(Payment, payment.id, Payment.status, current, changes):
        raise ConcurrencyConflict(f"Payment {payment.id} changed concurrently; expected {current}")

    audit_service.append_audit(
        order_id=payment.order_id,
        payment_id=payment.id,
        entity_type="PAYMENT",
        action=requested,
        from_status=current,
        to_status=requested,
        actor_user_id=_actor_id(actor),
        reason=reason,
        reference=reference,
        amount=amount,
        occurred_at=now,
    )
    return current


# =============================================================================
# PROOF UPLOAD
# =============================================================================

def attach_proof(payment_id: int, proof_url: str, *, actor, now: datetime | None = None) -> Payment:
    """
    Record the URL of an uploaded transfer receipt.

    Allowed while the payment is PENDING and the order is not CANCELLED.
    Customers may only attach proof to their own orders.
    """
    proof_url = (proof_url or "").strip()
    if not proof_url:
        raise ValidationError("proof_url is required")
    if len(proof_url) > MAX_PROOF_URL_LENGTH:
        raise ValidationError(f"proof_url must be at most {MAX_PROOF_URL_LENGTH} characters")
    now = now or utcnow()

    def _op():
        payment = get_payment(payment_id)
        order = payment.order
        if actor is not None and not actor.is_staff and order.user_id != actor.id:
            raise NotFoundError(f"Payment {payment_id} not found")
        if order.order_status == ORDER_CANCELLED:
            raise InvalidTransition("Cannot upload proof for a CANCELLED order")
        if payment.status != PAYMENT_PENDING:
            raise InvalidTransition(f"Proof can only be uploaded while payment is PENDING (is {payment.status})")

        if not compare_and_set(Payment, payment.id, Payment.status, PAYMENT_PENDING, {"proof_url": proof_url, "updated_at": now}):
            raise ConcurrencyConflict(f"Payment {payment.id} changed concurrently")

        audit_service.append_audit(
            order_id=order.id,
            payment_id=payment.id,
            entity_type="PAYMENT",
            action="PROOF_UPLOADED",
            from_status=PAYMENT_PENDING,
            to_status=PAYMENT_PENDING,
            actor_user_id=_actor_id(actor),
            payload={"proof_url": proof_url},
            occurred_at=now,
        )
        return payment

    return run_in_transaction(_op)


# =============================================================================
# GUARDED TRANSITIONS (no commit)
# =============================================================================

def _mark_paid_locked(payment: Payment, *, actor, now: datetime) -> list:
    if not payment.proof_url:
        raise ValidationError("Payment proof is required before marking a payment as PAID")
    order = payment.order
    if order.order_status == ORDER_CANCELLED:
        raise InvalidTransition("Cannot accept payment for a CANCELLED order")

    _transition_payment(payment, PAYMENT_PAID, actor=actor, now=now, values={"paid_at": now}, amount=payment.amount)
    return [notification_service.record_intent(
        recipient_id=order.user_id,
        order_id=order.id,
        event_type=notification_service.PAYMENT_CONFIRMED,
        payload=_payload(payment, order),
        created_at=now,
    )]


def _mark_failed_locked(payment: Payment, reason: str, *, actor, now: datetime, event_type: str | None = None) -> list:
    """
    PENDING -> FAILED, cancelling the order in the same transaction when it
    is still PENDING.
    """
    from .order_service import _cancel_locked

    order = payment.order
    _transition_payment(
        payment,
        PAYMENT_FAILED,
        actor=actor,
        now=now,
        values={"failure_reason": reason[:255], "failed_at": now},
        reason=reason,
    )
    notes = [notification_service.record_intent(
        recipient_id=order.user_id,
        order_id=order.id,
        event_type=event_type or notification_service.PAYMENT_FAILED,
        payload=_payload(payment, order, reason=reason),
        created_at=now,
    )]
    if order.order_status == ORDER_PENDING:
        notes.extend(_cancel_locked(order, actor=actor, now=now, reason=reason))
    return notes


def _refund_locked(payment: Payment, reason: str, amount: int, reference: str | None, *, actor, now: datetime) -> list:
    if payment.status != PAYMENT_PAID:
        raise InvalidTransition(f"Only PAID payments can be refunded (payment is {payment.status})")
    if amount > payment.amount:
        raise ValidationError(f"Refund amount {amount} exceeds the original payment of {payment.amount}")

    order = payment.order
    _transition_payment(
        payment,
        PAYMENT_REFUNDED,
        actor=actor,
        now=now,
        values={
            "refund_amount": amount,
            "refund_reason": reason[:255],
            "refund_reference": reference,
            "refunded_at": now,
        },
        reason=reason,
        reference=reference,
        amount=amount,
    )
    return [notification_service.record_intent(
        recipient_id=order.user_id,
        order_id=order.id,
        event_type=notification_service.PAYMENT_REFUNDED,
        payload=_payload(payment, order, refund_amount=amount, reference=reference),
        created_at=now,
    )]


def validate_refund_input(reason: str, amount, reference: str | None) -> tuple[str, int, str | None]:
    reason = require_reason(reason, min_length=MIN_REFUND_REASON_LENGTH)
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValidationError("Refund amount must be an integer")
    if amount <= 0:
        raise ValidationError("Refund amount must be positive")
    reference = (reference or "").strip() or None
    if reference is not None and len(reference) > 128:
        raise ValidationError("Refund reference must be at most 128 characters")
    return reason, amount, reference


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def mark_paid(payment_id: int, *, actor, now: datetime | None = None) -> Payment:
    """
    PENDING -> PAID.

    Raises:
        ValidationError: no proof_url recorded
        InvalidTransition: payment not PENDING, or order cancelled
    """
    now = now or utcnow()

    def _op():
        payment = get_payment(payment_id)
        return payment, _mark_paid_locked(payment, actor=actor, now=now)

    payment, notes = run_in_transaction(_op)
    current_app.logger.info("Payment %s marked PAID", payment.id)
    notification_service.deliver(notes)
    return payment


def mark_failed(payment_id: int, reason: str, *, actor, now: datetime | None = None) -> Payment:
    """
    PENDING -> FAILED; cancels the owning order if it is still PENDING.

    Raises:
        ValidationError: blank reason
        InvalidTransition: payment not PENDING
    """
    reason = require_reason(reason)
    now = now or utcnow()

    def _op():
        payment = get_payment(payment_id)
        return payment, _mark_failed_locked(payment, reason, actor=actor, now=now)

    payment, notes = run_in_transaction(_op)
    current_app.logger.info("Payment %s marked FAILED: %s", payment.id, reason)
    notification_service.deliver(notes)
    return payment


def refund(
    payment_id: int,
    reason: str,
    amount: int,
    reference: str | None = None,
    *,
    actor,
    now: datetime | None = None,
) -> Payment:
    """
    PAID -> REFUNDED. Records intent only; the transfer happens offline.

    Raises:
        ValidationError: reason too short, amount <= 0 or above the original
        InvalidTransition: payment not PAID (status unchanged)
    """
    reason, amount, reference = validate_refund_input(reason, amount, reference)
    now = now or utcnow()

    def _op():
        payment = get_payment(payment_id)
        return payment, _refund_locked(payment, reason, amount, reference, actor=actor, now=now)

    payment, notes = run_in_transaction(_op)
    current_app.logger.info("Payment %s refunded (%s, ref %s)", payment.id, amount, reference)
    notification_service.deliver(notes)
    return payment


def payment_history(order_id: int, *, actor=None) -> list:
    """Audit records of the order and its payment, oldest first."""
    from .order_service import get_order_for_actor

    if actor is not None:
        get_order_for_actor(order_id, actor)
    return audit_service.order_history(order_id)
