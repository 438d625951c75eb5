# Overview: Service-layer operations for maintenance; the idempotent reminder/expiry pass run by cron.

"""
Reminder / Expiry Maintenance Pass

run_maintenance_pass(now) is transport-agnostic: the cron HTTP endpoint and
the `flask maintenance run` command are thin adapters around it.

The external trigger is at-least-once and may overlap itself, so every pass
is idempotent by query:

1. payment_reminders   PENDING orders older than the reminder threshold and
                       not yet in the warning zone; one reminder per order.
2. deadline_warnings   PENDING orders within the warning lead of the
                       deadline; one warning per order.
3. expired_payments    PENDING orders past the deadline: payment FAILED and
                       order CANCELLED through workflow_service. Once
                       cancelled they no longer match the scan.
4. pickup_reminders    READY orders picking up today or tomorrow (venue
                       day) whose pickup window has not closed; one
                       reminder per order per category per day.

A reminder is "already sent" if a Notification row of that type exists for
the order inside the window. Such orders are excluded in the scan query
itself, before the MAINTENANCE_BATCH_SIZE limit. Rows are committed before
delivery, so a dispatch failure never causes a re-send and never undoes a
transition.

Passes are isolated: an exception inside one pass is recorded in the summary
and the remaining passes still run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from flask import current_app
from sqlalchemy import and_, exists, or_

from ..errors import InvalidTransition, StorefrontError, ValidationError
from ..extensions import db
from ..models import Notification, Order, Payment
from ..time_utils import to_utc_naive, utcnow, venue_day_bounds, to_utc_z
from . import notification_service
from .batch_calendar import open_pickup_windows
from .lifecycle_service import (
    ORDER_COMPLETED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_READY,
    PAYMENT_PENDING,
    PICKUP_NOT_PICKED_UP,
)
from .workflow_service import expire_unpaid_order


PASS_PAYMENT_REMINDERS = "payment_reminders"
PASS_DEADLINE_WARNINGS = "deadline_warnings"
PASS_EXPIRED_PAYMENTS = "expired_payments"
PASS_PICKUP_REMINDERS = "pickup_reminders"


@dataclass
class PassResult:
    name: str
    processed: int = 0
    reminders_sent: int = 0
    expired: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)

    def add_error(self, message: str, order_id: int | None = None) -> None:
        self.errors.append({"pass": self.name, "order_id": order_id, "error": message})

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "remindersSent": self.reminders_sent,
            "expired": self.expired,
            "skipped": self.skipped,
            "errors": len(self.errors),
        }


@dataclass
class MaintenanceSummary:
    ran_at: datetime
    passes: list[PassResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(p.processed for p in self.passes)

    @property
    def reminders_sent(self) -> int:
        return sum(p.reminders_sent for p in self.passes)

    @property
    def expired(self) -> int:
        return sum(p.expired for p in self.passes)

    @property
    def errors(self) -> list[dict]:
        return [e for p in self.passes for e in p.errors]

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "remindersSent": self.reminders_sent,
            "expired": self.expired,
            "errors": self.errors,
            "passes": {p.name: p.to_dict() for p in self.passes},
            "ranAt": to_utc_z(self.ran_at),
        }


def _hours(key: str) -> timedelta:
    return timedelta(hours=current_app.config[key])


def _batch_size() -> int:
    return current_app.config.get("MAINTENANCE_BATCH_SIZE", 200)


def _already_sent(event_type: str, since):
    """Correlated EXISTS: a Notification of `event_type` for the scanned order since `since`."""
    return exists().where(
        Notification.order_id == Order.id,
        Notification.event_type == event_type,
        Notification.created_at >= since,
    )


def _unpaid_query(
    created_after: datetime | None = None,
    created_at_or_before: datetime | None = None,
    *,
    unless_sent: str | None = None,
):
    """
    PENDING orders with a PENDING payment created in (after, at_or_before].

    With `unless_sent`, orders that already got that notification are left
    out before the batch limit, so handled orders never crowd out new ones.
    """
    q = (
        db.session.query(Order)
        .join(Payment, Payment.order_id == Order.id)
        .filter(
            Order.order_status == ORDER_PENDING,
            Payment.status == PAYMENT_PENDING,
        )
    )
    if created_at_or_before is not None:
        q = q.filter(Order.created_at <= created_at_or_before)
    if created_after is not None:
        q = q.filter(Order.created_at > created_after)
    if unless_sent is not None:
        q = q.filter(~_already_sent(unless_sent, Order.created_at))
    return q


def _unpaid_orders(created_after, created_at_or_before, *, unless_sent=None) -> list[Order]:
    q = _unpaid_query(created_after, created_at_or_before, unless_sent=unless_sent)
    return q.order_by(Order.created_at, Order.id).limit(_batch_size()).all()


def _deadline(order: Order) -> datetime:
    return order.created_at + _hours("PAYMENT_DEADLINE_HOURS")


def _send_once(result: PassResult, order: Order, event_type: str, since: datetime, payload: dict, now: datetime) -> None:
    """Record and deliver a reminder unless one exists since `since`."""
    if notification_service.has_notification_since(order.id, event_type, since):
        result.skipped += 1
        return

    note = notification_service.record_intent(
        recipient_id=order.user_id,
        order_id=order.id,
        event_type=event_type,
        payload=payload,
        created_at=now,
    )
    db.session.commit()
    result.reminders_sent += 1

    if notification_service.deliver([note]):
        result.add_error(f"Delivery of {event_type} failed", order.id)


def _payment_payload(order: Order, now: datetime) -> dict:
    deadline = _deadline(order)
    remaining = max(deadline - now, timedelta(0))
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "total_amount": order.total_amount,
        "deadline": to_utc_z(deadline),
        "minutes_remaining": int(remaining.total_seconds() // 60),
    }


# =============================================================================
# PASSES
# =============================================================================

def send_payment_reminders(now: datetime) -> PassResult:
    result = PassResult(PASS_PAYMENT_REMINDERS)
    deadline = _hours("PAYMENT_DEADLINE_HOURS")
    warning_start = deadline - _hours("PAYMENT_WARNING_LEAD_HOURS")
    reminder_after = _hours("PAYMENT_REMINDER_AFTER_HOURS")

    # Old enough for a reminder, not yet in the warning zone
    orders = _unpaid_orders(
        now - warning_start, now - reminder_after,
        unless_sent=notification_service.PAYMENT_REMINDER,
    )
    for order in orders:
        result.processed += 1
        try:
            _send_once(
                result, order, notification_service.PAYMENT_REMINDER,
                order.created_at, _payment_payload(order, now), now,
            )
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Payment reminder failed for order %s", order.id)
            result.add_error(str(exc), order.id)
    return result


def send_deadline_warnings(now: datetime) -> PassResult:
    result = PassResult(PASS_DEADLINE_WARNINGS)
    deadline = _hours("PAYMENT_DEADLINE_HOURS")
    warning_start = deadline - _hours("PAYMENT_WARNING_LEAD_HOURS")

    orders = _unpaid_orders(
        now - deadline, now - warning_start,
        unless_sent=notification_service.PAYMENT_DEADLINE_WARNING,
    )
    for order in orders:
        result.processed += 1
        try:
            _send_once(
                result, order, notification_service.PAYMENT_DEADLINE_WARNING,
                order.created_at, _payment_payload(order, now), now,
            )
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Deadline warning failed for order %s", order.id)
            result.add_error(str(exc), order.id)
    return result


def process_expired_payments(now: datetime) -> PassResult:
    result = PassResult(PASS_EXPIRED_PAYMENTS)
    deadline = _hours("PAYMENT_DEADLINE_HOURS")

    order_ids = [o.id for o in _unpaid_orders(None, now - deadline)]
    for order_id in order_ids:
        result.processed += 1
        try:
            _, delivery_failures = expire_unpaid_order(order_id, now=now)
            result.expired += 1
            if delivery_failures:
                result.add_error("Expiry notification delivery failed", order_id)
        except InvalidTransition:
            # Paid or cancelled since the scan; nothing to expire
            result.skipped += 1
        except StorefrontError as exc:
            # Includes a second ConcurrencyConflict; next run retries
            result.add_error(str(exc), order_id)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Expiry failed for order %s", order_id)
            result.add_error(str(exc), order_id)
    return result


def send_pickup_reminders(now: datetime) -> PassResult:
    result = PassResult(PASS_PICKUP_REMINDERS)
    zone = ZoneInfo(current_app.config["VENUE_TIMEZONE"])
    today_start, today_end = venue_day_bounds(now, zone)
    _, tomorrow_end = venue_day_bounds(now, zone, day_offset=1)

    # Only pickup windows that have not closed yet
    windows = open_pickup_windows(now, tomorrow_end, zone)
    if not windows:
        return result
    in_open_window = or_(*(
        and_(
            Order.pickup_date >= to_utc_naive(w.pickup_start),
            Order.pickup_date < to_utc_naive(w.pickup_end),
        )
        for w in windows
    ))
    not_yet_reminded = or_(
        and_(
            Order.pickup_date < today_end,
            ~_already_sent(notification_service.PICKUP_REMINDER_TODAY, today_start),
        ),
        and_(
            Order.pickup_date >= today_end,
            ~_already_sent(notification_service.PICKUP_REMINDER_H1, today_start),
        ),
    )

    orders = (
        db.session.query(Order)
        .filter(
            Order.order_status == ORDER_READY,
            Order.pickup_status == PICKUP_NOT_PICKED_UP,
            Order.pickup_date >= today_start,
            Order.pickup_date < tomorrow_end,
            in_open_window,
            not_yet_reminded,
        )
        .order_by(Order.pickup_date, Order.id)
        .limit(_batch_size())
        .all()
    )
    for order in orders:
        result.processed += 1
        event_type = (
            notification_service.PICKUP_REMINDER_TODAY
            if order.pickup_date < today_end
            else notification_service.PICKUP_REMINDER_H1
        )
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "pickup_date": to_utc_z(order.pickup_date),
            "pickup_location": order.pickup_location,
            "pickup_hours": order.pickup_hours,
        }
        try:
            _send_once(result, order, event_type, today_start, payload, now)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Pickup reminder failed for order %s", order.id)
            result.add_error(str(exc), order.id)
    return result


PASSES = (
    (PASS_PAYMENT_REMINDERS, send_payment_reminders),
    (PASS_DEADLINE_WARNINGS, send_deadline_warnings),
    (PASS_EXPIRED_PAYMENTS, process_expired_payments),
    (PASS_PICKUP_REMINDERS, send_pickup_reminders),
)

PASS_NAMES = tuple(name for name, _ in PASSES)


def _run_passes(passes, now: datetime) -> MaintenanceSummary:
    summary = MaintenanceSummary(ran_at=now)

    for name, func in passes:
        try:
            result = func(now)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Maintenance pass %s failed", name)
            result = PassResult(name)
            result.add_error(str(exc))
        summary.passes.append(result)

    current_app.logger.info(
        "Maintenance pass at %s (%s): processed=%s reminders=%s expired=%s errors=%s",
        to_utc_z(now), ",".join(p.name for p in summary.passes),
        summary.processed, summary.reminders_sent, summary.expired, len(summary.errors),
    )
    return summary


def run_maintenance_pass(now: datetime | None = None) -> MaintenanceSummary:
    """
    Run all four passes once. Safe to invoke any number of times.

    A pass that raises is recorded as an error; the others still run.
    """
    return _run_passes(PASSES, now or utcnow())


def run_single_pass(name: str, now: datetime | None = None) -> MaintenanceSummary:
    """
    Run one named pass (manual admin trigger). "all" runs every pass.

    Raises:
        ValidationError: unknown pass name
    """
    if name == "all":
        return run_maintenance_pass(now)
    selected = [(n, func) for n, func in PASSES if n == name]
    if not selected:
        raise ValidationError(f"Unknown pass {name!r}; use one of {', '.join(PASS_NAMES + ('all',))}")
    return _run_passes(selected, now or utcnow())


# =============================================================================
# STATS
# =============================================================================

def maintenance_stats(now: datetime | None = None) -> dict:
    """
    Counts of what the next pass would act on, plus order progress.

    Read-only. "Needing" counts exclude orders that already got the
    notification, matching what the passes would pick up.
    """
    now = now or utcnow()
    zone = ZoneInfo(current_app.config["VENUE_TIMEZONE"])
    deadline = _hours("PAYMENT_DEADLINE_HOURS")
    warning_start = deadline - _hours("PAYMENT_WARNING_LEAD_HOURS")
    reminder_after = _hours("PAYMENT_REMINDER_AFTER_HOURS")
    today_start, today_end = venue_day_bounds(now, zone)

    payments = {
        "pendingOrders": _unpaid_query().count(),
        "ordersNeedingReminders": _unpaid_query(
            now - warning_start, now - reminder_after,
            unless_sent=notification_service.PAYMENT_REMINDER,
        ).count(),
        "ordersNeedingWarnings": _unpaid_query(
            now - deadline, now - warning_start,
            unless_sent=notification_service.PAYMENT_DEADLINE_WARNING,
        ).count(),
        "expiredOrders": _unpaid_query(None, now - deadline).count(),
    }

    ready = db.session.query(Order).filter(
        Order.order_status == ORDER_READY,
        Order.pickup_status == PICKUP_NOT_PICKED_UP,
    )
    orders = {
        "processingOrders": db.session.query(Order).filter(Order.order_status == ORDER_PROCESSING).count(),
        "readyOrders": ready.count(),
        # Pickup day is over and nobody came
        "overduePickups": ready.filter(Order.pickup_date < today_start).count(),
        "completedToday": db.session.query(Order).filter(
            Order.order_status == ORDER_COMPLETED,
            Order.picked_up_at >= today_start,
            Order.picked_up_at < today_end,
        ).count(),
    }

    return {"payments": payments, "orders": orders, "generatedAt": to_utc_z(now)}
