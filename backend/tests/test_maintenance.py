"""
Maintenance pass tests.

Verifies:
- Each pass acts once per order (re-running is a no-op)
- Expiry goes through the guarded transitions
- Dispatch failures never undo a transition or cause a re-send
- A failing pass does not stop the others
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from storefront.errors import InvalidTransition, ValidationError
from storefront.extensions import db
from storefront.models import AuditLog, Notification, Order
from storefront.services import maintenance_service
from storefront.services.batch_calendar import BATCH_1, PHASE_CUTOFF, compute_status, resolve_batch
from storefront.services.maintenance_service import maintenance_stats, run_maintenance_pass

from conftest import T0


def _state(order_id):
    db.session.expire_all()
    order = db.session.get(Order, order_id)
    return order.order_status, order.payment.status


def _count(event_type, order_id=None):
    q = db.session.query(Notification).filter_by(event_type=event_type)
    if order_id is not None:
        q = q.filter_by(order_id=order_id)
    return q.count()


def _pass(summary, name):
    return next(p for p in summary.passes if p.name == name)


# =============================================================================
# PAYMENT REMINDERS / WARNINGS
# =============================================================================


class TestPaymentReminders:

    def test_fresh_order_is_left_alone(self, customer, make_order):
        make_order(customer)
        summary = run_maintenance_pass(T0 + timedelta(minutes=30))
        assert (summary.processed, summary.reminders_sent, summary.expired) == (0, 0, 0)

    def test_reminder_sent_once(self, customer, make_order, dispatcher):
        order = make_order(customer)

        first = run_maintenance_pass(T0 + timedelta(hours=2))
        second = run_maintenance_pass(T0 + timedelta(hours=3))

        assert first.reminders_sent == 1
        assert second.reminders_sent == 0
        assert _pass(second, "payment_reminders").processed == 0
        assert _count("PAYMENT_REMINDER", order.id) == 1
        assert len(dispatcher.events("PAYMENT_REMINDER")) == 1

    def test_deadline_warning_sent_once(self, customer, make_order):
        order = make_order(customer)
        run_maintenance_pass(T0 + timedelta(hours=2))

        first = run_maintenance_pass(T0 + timedelta(hours=22, minutes=30))
        second = run_maintenance_pass(T0 + timedelta(hours=23))

        assert _pass(first, "deadline_warnings").reminders_sent == 1
        assert _pass(first, "payment_reminders").processed == 0
        assert second.reminders_sent == 0
        assert _count("PAYMENT_DEADLINE_WARNING", order.id) == 1
        assert _count("PAYMENT_REMINDER", order.id) == 1

    def test_warning_payload_counts_down(self, customer, make_order, dispatcher):
        make_order(customer)
        run_maintenance_pass(T0 + timedelta(hours=23))
        (_, _, payload), = dispatcher.events("PAYMENT_DEADLINE_WARNING")
        assert payload["minutes_remaining"] == 60
        assert payload["deadline"] == "2026-03-03T07:00:00Z"

    def test_reminded_orders_do_not_crowd_out_newer_ones(self, app, customer, other_customer, make_order, monkeypatch):
        monkeypatch.setitem(app.config, "MAINTENANCE_BATCH_SIZE", 1)
        first = make_order(customer)
        second = make_order(other_customer, created_at=T0 + timedelta(minutes=1))

        for hour in range(2, 22):
            run_maintenance_pass(T0 + timedelta(hours=hour))

        assert _count("PAYMENT_REMINDER", first.id) == 1
        assert _count("PAYMENT_REMINDER", second.id) == 1

    def test_warned_orders_do_not_crowd_out_newer_ones(self, app, customer, other_customer, make_order, monkeypatch):
        monkeypatch.setitem(app.config, "MAINTENANCE_BATCH_SIZE", 1)
        first = make_order(customer)
        second = make_order(other_customer, created_at=T0 + timedelta(minutes=1))

        run_maintenance_pass(T0 + timedelta(hours=22, minutes=30))
        run_maintenance_pass(T0 + timedelta(hours=23))

        assert _count("PAYMENT_DEADLINE_WARNING", first.id) == 1
        assert _count("PAYMENT_DEADLINE_WARNING", second.id) == 1

    def test_paid_orders_get_no_reminders(self, customer, make_paid_order):
        make_paid_order(customer)
        summary = run_maintenance_pass(T0 + timedelta(hours=2))
        assert summary.reminders_sent == 0


# =============================================================================
# EXPIRY
# =============================================================================


class TestExpiry:

    def test_cutoff_then_expiry_scenario(self, customer, make_order):
        # Placed 14:00 Jakarta; at 15:01 the Batch 1 cutoff has passed
        order = make_order(customer)
        window = resolve_batch(T0, ZoneInfo("Asia/Jakarta"))
        assert window.definition is BATCH_1
        assert compute_status(window, T0 + timedelta(hours=1, minutes=1)) == PHASE_CUTOFF

        summary = run_maintenance_pass(T0 + timedelta(hours=24))
        assert summary.expired == 1
        assert _state(order.id) == ("CANCELLED", "FAILED")

    def test_expiry_is_idempotent(self, customer, make_order, dispatcher):
        order = make_order(customer)

        first = run_maintenance_pass(T0 + timedelta(hours=24))
        audit_rows = db.session.query(AuditLog).filter_by(order_id=order.id).count()
        second = run_maintenance_pass(T0 + timedelta(hours=24, seconds=1))

        assert (first.expired, second.expired) == (1, 0)
        assert _pass(second, "expired_payments").processed == 0
        assert _state(order.id) == ("CANCELLED", "FAILED")
        assert db.session.query(AuditLog).filter_by(order_id=order.id).count() == audit_rows
        assert _count("PAYMENT_EXPIRED", order.id) == 1
        assert len(dispatcher.events("PAYMENT_EXPIRED")) == 1

    def test_one_second_before_deadline_is_not_expired(self, customer, make_order):
        order = make_order(customer)
        summary = run_maintenance_pass(T0 + timedelta(hours=24) - timedelta(seconds=1))
        assert summary.expired == 0
        assert _state(order.id) == ("PENDING", "PENDING")

    def test_paid_order_is_never_expired(self, customer, make_paid_order):
        order = make_paid_order(customer)
        summary = run_maintenance_pass(T0 + timedelta(hours=30))
        assert summary.expired == 0
        assert _state(order.id) == ("PENDING", "PAID")

    def test_customer_cancelled_order_is_skipped(self, customer, make_order):
        from storefront.services import order_service

        order = make_order(customer)
        order_service.cancel(order.id, actor=customer, now=T0 + timedelta(hours=1))
        summary = run_maintenance_pass(T0 + timedelta(hours=25))
        assert summary.expired == 0
        assert _state(order.id) == ("CANCELLED", "PENDING")

    def test_lost_race_counts_as_skipped(self, customer, make_order, monkeypatch):
        make_order(customer)

        def confirmed_meanwhile(order_id, now=None):
            raise InvalidTransition("Order is no longer awaiting payment")

        monkeypatch.setattr(maintenance_service, "expire_unpaid_order", confirmed_meanwhile)
        summary = run_maintenance_pass(T0 + timedelta(hours=25))

        result = _pass(summary, "expired_payments")
        assert (result.processed, result.skipped, result.expired) == (1, 1, 0)
        assert summary.errors == []


# =============================================================================
# PICKUP REMINDERS
# =============================================================================


class TestPickupReminders:

    def test_today_reminder_sent_once_per_day(self, customer, make_ready_order):
        order = make_ready_order(customer)
        # 16:00 Jakarta, pickup at 18:00 the same day
        now = datetime(2026, 3, 2, 9, 0)

        first = run_maintenance_pass(now)
        second = run_maintenance_pass(now + timedelta(hours=1))

        assert _pass(first, "pickup_reminders").reminders_sent == 1
        assert _pass(second, "pickup_reminders").reminders_sent == 0
        assert _count("PICKUP_REMINDER_TODAY", order.id) == 1

    def test_tomorrow_then_today(self, customer, make_ready_order):
        # Placed 16:00 Jakarta (past cutoff): pickup 08:00 next morning
        order = make_ready_order(customer, created_at=datetime(2026, 3, 2, 9, 0))

        run_maintenance_pass(datetime(2026, 3, 2, 10, 0))
        run_maintenance_pass(datetime(2026, 3, 2, 12, 0))
        assert _count("PICKUP_REMINDER_H1", order.id) == 1
        assert _count("PICKUP_REMINDER_TODAY", order.id) == 0

        # 07:00 Jakarta on pickup day
        run_maintenance_pass(datetime(2026, 3, 3, 0, 0))
        assert _count("PICKUP_REMINDER_TODAY", order.id) == 1

    def test_picked_up_orders_are_ignored(self, customer, staff, make_ready_order):
        from storefront.services import pickup_service

        order = make_ready_order(customer)
        db.session.expire_all()
        token = db.session.get(Order, order.id).pickup_verification_token
        pickup_service.verify(token, actor=staff, now=datetime(2026, 3, 2, 11, 5))

        summary = run_maintenance_pass(datetime(2026, 3, 2, 11, 30))
        assert _pass(summary, "pickup_reminders").processed == 0

    def test_no_reminder_after_pickup_window_closed(self, customer, make_ready_order):
        order = make_ready_order(customer)
        # 21:00 Jakarta; the 18:00-20:00 window is over
        summary = run_maintenance_pass(datetime(2026, 3, 2, 14, 0))

        assert _pass(summary, "pickup_reminders").processed == 0
        assert _count("PICKUP_REMINDER_TODAY", order.id) == 0

    def test_reminder_during_open_window(self, customer, make_ready_order):
        order = make_ready_order(customer)
        # 19:30 Jakarta, inside the pickup window
        run_maintenance_pass(datetime(2026, 3, 2, 12, 30))
        assert _count("PICKUP_REMINDER_TODAY", order.id) == 1

    def test_reminded_pickups_do_not_crowd_out_others(self, app, customer, other_customer, make_ready_order, monkeypatch):
        monkeypatch.setitem(app.config, "MAINTENANCE_BATCH_SIZE", 1)
        first = make_ready_order(customer)
        second = make_ready_order(other_customer)

        run_maintenance_pass(datetime(2026, 3, 2, 9, 0))
        run_maintenance_pass(datetime(2026, 3, 2, 10, 0))

        assert _count("PICKUP_REMINDER_TODAY", first.id) == 1
        assert _count("PICKUP_REMINDER_TODAY", second.id) == 1


# =============================================================================
# FAILURE ISOLATION
# =============================================================================


class TestFailureIsolation:

    def test_dispatch_failure_is_reported_not_resent(self, customer, make_order, failing_dispatcher):
        order = make_order(customer)

        first = run_maintenance_pass(T0 + timedelta(hours=2))
        second = run_maintenance_pass(T0 + timedelta(hours=3))

        assert first.reminders_sent == 1
        assert len(first.errors) == 1
        assert second.reminders_sent == 0
        note = db.session.query(Notification).filter_by(order_id=order.id, event_type="PAYMENT_REMINDER").one()
        assert note.delivered_at is None
        assert "SMTP" in note.delivery_error

    def test_dispatch_failure_does_not_undo_expiry(self, customer, make_order, failing_dispatcher):
        order = make_order(customer)
        summary = run_maintenance_pass(T0 + timedelta(hours=24))

        assert summary.expired == 1
        assert summary.errors
        assert _state(order.id) == ("CANCELLED", "FAILED")

    def test_crashing_pass_does_not_stop_the_others(self, customer, make_order, monkeypatch):
        order = make_order(customer)

        def broken(now):
            raise RuntimeError("reminder query timed out")

        passes = list(maintenance_service.PASSES)
        passes[0] = ("payment_reminders", broken)
        monkeypatch.setattr(maintenance_service, "PASSES", tuple(passes))

        summary = run_maintenance_pass(T0 + timedelta(hours=24))

        assert summary.expired == 1
        assert _state(order.id) == ("CANCELLED", "FAILED")
        assert [e["pass"] for e in summary.errors] == ["payment_reminders"]

    def test_per_order_failure_is_isolated(self, customer, other_customer, make_order, monkeypatch):
        first = make_order(customer)
        second = make_order(other_customer)
        original = maintenance_service._payment_payload

        def flaky_payload(order, now):
            if order.id == first.id:
                raise RuntimeError("template missing")
            return original(order, now)

        monkeypatch.setattr(maintenance_service, "_payment_payload", flaky_payload)
        summary = run_maintenance_pass(T0 + timedelta(hours=2))

        assert summary.reminders_sent == 1
        assert [e["order_id"] for e in summary.errors] == [first.id]
        assert _count("PAYMENT_REMINDER", second.id) == 1

    def test_summary_shape(self, db_session):
        data = run_maintenance_pass(T0).to_dict()
        assert set(data) >= {"processed", "remindersSent", "expired", "errors", "passes"}
        assert set(data["passes"]) == {"payment_reminders", "deadline_warnings", "expired_payments", "pickup_reminders"}


# =============================================================================
# MANUAL RUNS / STATS
# =============================================================================


class TestSinglePass:

    def test_runs_only_the_named_pass(self, customer, make_order):
        order = make_order(customer)

        summary = maintenance_service.run_single_pass("deadline_warnings", T0 + timedelta(hours=2))
        assert [p.name for p in summary.passes] == ["deadline_warnings"]
        assert _count("PAYMENT_REMINDER", order.id) == 0

        summary = maintenance_service.run_single_pass("payment_reminders", T0 + timedelta(hours=2))
        assert summary.reminders_sent == 1

    def test_all_runs_every_pass(self, db_session):
        summary = maintenance_service.run_single_pass("all", T0)
        assert [p.name for p in summary.passes] == list(maintenance_service.PASS_NAMES)

    def test_unknown_pass(self, db_session):
        with pytest.raises(ValidationError):
            maintenance_service.run_single_pass("refunds", T0)


class TestMaintenanceStats:

    def test_counts_what_the_next_pass_would_do(self, customer, other_customer, make_order, make_ready_order):
        make_order(customer)
        make_ready_order(other_customer)
        now = T0 + timedelta(hours=2)

        stats = maintenance_stats(now)
        assert stats["payments"] == {
            "pendingOrders": 1,
            "ordersNeedingReminders": 1,
            "ordersNeedingWarnings": 0,
            "expiredOrders": 0,
        }
        assert stats["orders"] == {
            "processingOrders": 0,
            "readyOrders": 1,
            "overduePickups": 0,
            "completedToday": 0,
        }

        run_maintenance_pass(now)
        assert maintenance_stats(now)["payments"]["ordersNeedingReminders"] == 0

    def test_expired_and_overdue(self, customer, other_customer, make_order, make_ready_order):
        make_order(customer)
        make_ready_order(other_customer)

        # 01:00 Jakarta on the 4th; pickup day (the 2nd) is over
        stats = maintenance_stats(datetime(2026, 3, 3, 18, 0))
        assert stats["payments"]["expiredOrders"] == 1
        assert stats["orders"]["overduePickups"] == 1

    def test_processing_and_completed_today(self, customer, other_customer, staff, admin, make_order, make_ready_order):
        from storefront.services import order_service, payment_service, pickup_service, workflow_service

        preparing = make_order(customer)
        payment_service.attach_proof(preparing.payment.id, "https://storage.test/r.jpg", actor=customer, now=T0)
        workflow_service.confirm_order(preparing.id, actor=admin, now=T0 + timedelta(minutes=5))
        order_service.start_preparation(preparing.id, actor=staff, now=T0 + timedelta(minutes=10))

        ready = make_ready_order(other_customer)
        db.session.expire_all()
        token = db.session.get(Order, ready.id).pickup_verification_token
        pickup_service.verify(token, actor=staff, now=datetime(2026, 3, 2, 11, 5))

        stats = maintenance_stats(datetime(2026, 3, 2, 12, 0))
        assert stats["orders"]["processingOrders"] == 1
        assert stats["orders"]["readyOrders"] == 0
        assert stats["orders"]["completedToday"] == 1
