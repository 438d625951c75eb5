# Overview: Service-layer operations for notification intents and best-effort delivery.

"""
Notification Intents

The core decides *what* to tell *whom* and *when*; delivery is an external
collaborator behind the NotificationDispatcher interface.

FLOW:
1. record_intent() adds a Notification row inside the transaction that made
   the decision (state transition or reminder check).
2. The caller commits.
3. deliver() hands each committed intent to the dispatcher. Failures are
   logged and stored on the row; they never roll back the transition.

The persisted rows are also the idempotency record for scheduler reminders
(has_notification_since).
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import Notification
from ..time_utils import utcnow


ORDER_CREATED = "ORDER_CREATED"
ORDER_CONFIRMED = "ORDER_CONFIRMED"
ORDER_PREPARATION_STARTED = "ORDER_PREPARATION_STARTED"
ORDER_DELAYED = "ORDER_DELAYED"
ORDER_READY = "ORDER_READY_FOR_PICKUP"
ORDER_COMPLETED = "ORDER_PICKUP_COMPLETED"
ORDER_CANCELLED = "ORDER_CANCELLED"
PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
PAYMENT_FAILED = "PAYMENT_FAILED"
PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
PAYMENT_REMINDER = "PAYMENT_REMINDER"
PAYMENT_DEADLINE_WARNING = "PAYMENT_DEADLINE_WARNING"
PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
PICKUP_REMINDER_H1 = "PICKUP_REMINDER_H1"
PICKUP_REMINDER_TODAY = "PICKUP_REMINDER_TODAY"


class NotificationDispatcher:
    """
    Delivery boundary. Implementations send email / push / chat messages.

    send() may raise; callers treat any exception as a failed delivery.
    """

    def send(self, recipient_id: int, event_type: str, payload: dict) -> None:
        raise NotImplementedError


class LoggingDispatcher(NotificationDispatcher):
    """Default dispatcher: the in-app row is the message; log the event."""

    def send(self, recipient_id: int, event_type: str, payload: dict) -> None:
        current_app.logger.info(
            "Notification %s -> user %s (order %s)",
            event_type, recipient_id, payload.get("order_number"),
        )


def get_dispatcher() -> NotificationDispatcher:
    dispatcher = current_app.extensions.get("notification_dispatcher")
    if dispatcher is None:
        dispatcher = LoggingDispatcher()
        current_app.extensions["notification_dispatcher"] = dispatcher
    return dispatcher


def record_intent(
    *,
    recipient_id: int,
    event_type: str,
    order_id: int | None = None,
    payload: Optional[dict] = None,
    created_at: Optional[datetime] = None,
) -> Notification:
    """Persist a notification intent in the current transaction (no commit)."""
    notification = Notification(
        recipient_id=recipient_id,
        order_id=order_id,
        event_type=event_type,
        payload=json.dumps(payload or {}, sort_keys=True, default=str),
        created_at=created_at or utcnow(),
    )
    db.session.add(notification)
    db.session.flush()
    return notification


def has_notification_since(order_id: int, event_type: str, since: datetime) -> bool:
    """Idempotency check: was this intent already recorded in the window?"""
    return db.session.query(
        db.session.query(Notification.id)
        .filter(
            Notification.order_id == order_id,
            Notification.event_type == event_type,
            Notification.created_at >= since,
        )
        .exists()
    ).scalar()


def deliver(notifications: Iterable[Notification]) -> int:
    """
    Dispatch committed intents. Returns the number of failed deliveries.

    Never raises for dispatcher errors; the transition that produced the
    intent is already committed.
    """
    dispatcher = get_dispatcher()
    failures = 0
    touched = False
    for notification in notifications:
        try:
            dispatcher.send(notification.recipient_id, notification.event_type, notification.payload_dict)
            notification.delivered_at = utcnow()
            notification.delivery_error = None
        except Exception as exc:
            failures += 1
            notification.delivery_error = str(exc)[:255]
            current_app.logger.warning(
                "Notification %s for order %s failed: %s",
                notification.event_type, notification.order_id, exc,
            )
        touched = True

    if touched:
        db.session.commit()
    return failures


def list_for_user(user_id: int, *, limit: int = 50) -> list[Notification]:
    return (
        db.session.query(Notification)
        .filter_by(recipient_id=user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
