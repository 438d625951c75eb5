# Overview: Service-layer guard predicates for the order and payment state machines.

"""
Order & Payment Lifecycle Rules

================================================================================
Single source of truth for which transitions are legal. Interactive routes,
orchestration functions and the maintenance scheduler all ask these
predicates before writing, and the write itself is a compare-and-set on the
status that was checked (see concurrency.compare_and_set).
================================================================================

ORDER STATE MACHINE:
    PENDING -> CONFIRMED -> PROCESSING -> READY -> COMPLETED
    PENDING   -> CANCELLED        (customer, staff, scheduler)
    CONFIRMED -> CANCELLED        (staff/admin override only)
    PENDING   -> PROCESSING       (staff, payment must be PAID)

    COMPLETED and CANCELLED are terminal.
    READY -> COMPLETED only through pickup token redemption.
    Cancelling while the payment is PAID is refused (refund first).

PAYMENT STATE MACHINE:
    PENDING -> PAID      (proof of transfer required)
    PENDING -> FAILED    (reason required; terminal)
    PAID    -> REFUNDED  (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from ..errors import InvalidTransition, PaidOrderNotCancellable, ValidationError


ORDER_PENDING = "PENDING"
ORDER_CONFIRMED = "CONFIRMED"
ORDER_PROCESSING = "PROCESSING"
ORDER_READY = "READY"
ORDER_COMPLETED = "COMPLETED"
ORDER_CANCELLED = "CANCELLED"

ORDER_STATUSES = {
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_PROCESSING,
    ORDER_READY,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
}
ORDER_TERMINAL = {ORDER_COMPLETED, ORDER_CANCELLED}

PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"
PAYMENT_FAILED = "FAILED"
PAYMENT_REFUNDED = "REFUNDED"

PAYMENT_STATUSES = {PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED}

PICKUP_NOT_PICKED_UP = "NOT_PICKED_UP"
PICKUP_PICKED_UP = "PICKED_UP"

ACTOR_CUSTOMER = "CUSTOMER"
ACTOR_STAFF = "STAFF"
ACTOR_ADMIN = "ADMIN"
ACTOR_SYSTEM = "SYSTEM"

ActorRole = Literal["CUSTOMER", "STAFF", "ADMIN", "SYSTEM"]

_ORDER_EDGES = {
    (ORDER_PENDING, ORDER_CONFIRMED),
    (ORDER_PENDING, ORDER_PROCESSING),
    (ORDER_CONFIRMED, ORDER_PROCESSING),
    (ORDER_PROCESSING, ORDER_READY),
    (ORDER_READY, ORDER_COMPLETED),
    (ORDER_PENDING, ORDER_CANCELLED),
    (ORDER_CONFIRMED, ORDER_CANCELLED),
}

_PAYMENT_EDGES = {
    (PAYMENT_PENDING, PAYMENT_PAID),
    (PAYMENT_PENDING, PAYMENT_FAILED),
    (PAYMENT_PAID, PAYMENT_REFUNDED),
}

_STAFF_ROLES = {ACTOR_STAFF, ACTOR_ADMIN}


@dataclass(frozen=True)
class TransitionContext:
    """Facts a guard needs beyond the two states."""
    payment_status: Optional[str] = None
    actor_role: ActorRole = ACTOR_SYSTEM
    via_redemption: bool = False


def _order_violation(current: str, requested: str, context: TransitionContext) -> Optional[InvalidTransition]:
    """Return the error explaining why the transition is illegal, or None."""
    if current not in ORDER_STATUSES or requested not in ORDER_STATUSES:
        return InvalidTransition(f"Unknown order status transition {current} -> {requested}")

    if current in ORDER_TERMINAL:
        return InvalidTransition(f"Order is {current} and can no longer change")

    if (current, requested) not in _ORDER_EDGES:
        return InvalidTransition(f"Order cannot move from {current} to {requested}")

    if requested == ORDER_CONFIRMED:
        if context.payment_status != PAYMENT_PAID:
            return InvalidTransition("Order can only be confirmed once its payment is PAID")

    elif requested == ORDER_PROCESSING:
        if context.actor_role not in _STAFF_ROLES:
            return InvalidTransition("Only staff can start order preparation")
        if context.payment_status != PAYMENT_PAID:
            return InvalidTransition("Order preparation requires a PAID payment")

    elif requested == ORDER_READY:
        if context.actor_role not in _STAFF_ROLES:
            return InvalidTransition("Only staff can mark an order ready")

    elif requested == ORDER_COMPLETED:
        if not context.via_redemption:
            return InvalidTransition("Orders are completed only by redeeming the pickup token")

    elif requested == ORDER_CANCELLED:
        if context.payment_status == PAYMENT_PAID:
            return PaidOrderNotCancellable("Order has a PAID payment; refund it before cancelling")
        if current == ORDER_CONFIRMED and context.actor_role not in _STAFF_ROLES:
            return InvalidTransition("Only staff can cancel a CONFIRMED order")

    return None


def can_transition(current: str, requested: str, context: TransitionContext | None = None) -> bool:
    """
    Check if an order transition is legal.

    Pure predicate shared by admin endpoints and the scheduler.
    """
    return _order_violation(current, requested, context or TransitionContext()) is None


def require_transition(current: str, requested: str, context: TransitionContext | None = None) -> None:
    """Raise the specific InvalidTransition for an illegal order transition."""
    error = _order_violation(current, requested, context or TransitionContext())
    if error is not None:
        raise error


def can_transition_payment(current: str, requested: str) -> bool:
    return (current, requested) in _PAYMENT_EDGES


def require_payment_transition(current: str, requested: str) -> None:
    if current not in PAYMENT_STATUSES or requested not in PAYMENT_STATUSES:
        raise InvalidTransition(f"Unknown payment status transition {current} -> {requested}")
    if not can_transition_payment(current, requested):
        raise InvalidTransition(f"Payment cannot move from {current} to {requested}")


def require_reason(reason: Optional[str], *, field: str = "reason", min_length: int = 1) -> str:
    """Validation helper: a non-blank reason of at least min_length characters."""
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    if len(cleaned) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    return cleaned


def actor_role_for(user) -> ActorRole:
    """Map a User (or None for the scheduler) onto a guard actor role."""
    if user is None:
        return ACTOR_SYSTEM
    if user.role in _STAFF_ROLES:
        return user.role
    return ACTOR_CUSTOMER
