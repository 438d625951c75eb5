"""
Batch calendar tests.

Verifies:
- Cutoff boundary (14:59:59 stays, 15:00:00 rolls to the next batch)
- Batch 2 wraps midnight as one instance
- Phases are an ordered step function
- Late preparation moves pickup to the next open window
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from storefront.services.batch_calendar import (
    BATCH_1,
    BATCH_2,
    PHASE_ACTIVE,
    PHASE_COMPLETED,
    PHASE_CUTOFF,
    PHASE_PICKUP,
    PHASE_PREPARATION,
    PHASE_UPCOMING,
    compute_status,
    current_batches,
    is_past_cutoff,
    next_pickup_window,
    open_pickup_windows,
    pickup_batch_for,
    pickup_date_utc,
    resolve_batch,
)


WIB = ZoneInfo("Asia/Jakarta")


def wib(day, hour, minute=0, second=0):
    return datetime(2026, 3, day, hour, minute, second, tzinfo=WIB)


# =============================================================================
# RESOLUTION
# =============================================================================


class TestResolveBatch:

    def test_morning_belongs_to_batch_1(self):
        window = resolve_batch(wib(2, 9), WIB)
        assert window.definition is BATCH_1
        assert window.anchor_date.isoformat() == "2026-03-02"

    def test_window_start_is_inclusive(self):
        assert resolve_batch(wib(2, 6), WIB).definition is BATCH_1
        assert resolve_batch(wib(2, 18), WIB).definition is BATCH_2

    def test_batch_2_wraps_midnight_as_one_instance(self):
        late = resolve_batch(wib(1, 23, 30), WIB)
        early = resolve_batch(wib(2, 2), WIB)
        assert late == early
        assert late.definition is BATCH_2
        assert late.anchor_date.isoformat() == "2026-03-01"

    def test_wraparound_cutoff_is_relative_to_instance(self):
        window = resolve_batch(wib(1, 23, 30), WIB)
        assert not is_past_cutoff(window, wib(1, 23, 30))
        assert not is_past_cutoff(window, wib(2, 2))
        assert is_past_cutoff(window, wib(2, 3))

    def test_naive_timestamps_are_utc(self):
        # 02:00 UTC is 09:00 in Jakarta
        assert resolve_batch(datetime(2026, 3, 2, 2, 0), WIB).definition is BATCH_1

    def test_other_offsets_resolve_to_the_same_instant(self):
        utc_instant = wib(2, 23).astimezone(timezone.utc)
        assert resolve_batch(utc_instant, WIB) == resolve_batch(wib(2, 23), WIB)

    def test_is_deterministic(self):
        ts = wib(2, 14, 59, 59)
        assert resolve_batch(ts, WIB) == resolve_batch(ts, WIB)

    def test_every_quarter_hour_lands_inside_its_window(self):
        start = wib(2, 0)
        for step in range(24 * 4):
            ts = start + timedelta(minutes=15 * step)
            window = resolve_batch(ts, WIB)
            assert window.start_time <= ts < window.end_time, ts


# =============================================================================
# CUTOFF
# =============================================================================


class TestCutoffBoundary:

    def test_one_second_before_cutoff_keeps_batch_1(self):
        window = pickup_batch_for(wib(2, 14, 59, 59), WIB)
        assert window.definition is BATCH_1
        assert window.pickup_start == wib(2, 18)

    def test_exact_cutoff_rolls_to_batch_2(self):
        window = pickup_batch_for(wib(2, 15), WIB)
        assert window.definition is BATCH_2
        assert window.pickup_start == wib(3, 8)
        assert window.pickup_end == wib(3, 12)

    def test_batch_2_cutoff_rolls_to_next_day_batch_1(self):
        window = pickup_batch_for(wib(3, 3), WIB)
        assert window.definition is BATCH_1
        assert window.anchor_date.isoformat() == "2026-03-03"

    def test_batch_2_before_cutoff_picks_up_next_morning(self):
        window = pickup_batch_for(wib(3, 2, 59, 59), WIB)
        assert window.definition is BATCH_2
        assert window.pickup_start == wib(3, 8)


# =============================================================================
# PHASES
# =============================================================================


class TestComputeStatus:

    @pytest.mark.parametrize(
        "now,expected",
        [
            (wib(1, 17, 59), PHASE_UPCOMING),
            (wib(1, 18), PHASE_ACTIVE),
            (wib(2, 2, 59), PHASE_ACTIVE),
            (wib(2, 3), PHASE_CUTOFF),
            (wib(2, 6), PHASE_PREPARATION),
            (wib(2, 8), PHASE_PICKUP),
            (wib(2, 11, 59), PHASE_PICKUP),
            (wib(2, 12), PHASE_COMPLETED),
        ],
    )
    def test_batch_2_phases(self, now, expected):
        window = resolve_batch(wib(1, 20), WIB)
        assert compute_status(window, now) == expected

    def test_batch_1_has_no_preparation_gap(self):
        window = resolve_batch(wib(2, 9), WIB)
        assert compute_status(window, wib(2, 17, 59)) == PHASE_CUTOFF
        assert compute_status(window, wib(2, 18)) == PHASE_PICKUP
        assert compute_status(window, wib(2, 20)) == PHASE_COMPLETED

    def test_order_at_14_still_reports_batch_1_after_cutoff(self):
        window = resolve_batch(wib(2, 14), WIB)
        assert window.definition is BATCH_1
        assert compute_status(window, wib(2, 15, 1)) == PHASE_CUTOFF

    def test_current_batches_lists_current_and_next(self):
        batches = current_batches(wib(2, 9), WIB)
        assert [b["batch_id"] for b in batches] == ["batch_1", "batch_2"]
        assert batches[0]["status"] == PHASE_ACTIVE
        assert batches[0]["is_current"] is True
        assert batches[1]["status"] == PHASE_UPCOMING


# =============================================================================
# PICKUP ASSIGNMENT
# =============================================================================


class TestNextPickupWindow:

    def test_on_time_preparation_keeps_original_batch(self):
        window = next_pickup_window(wib(2, 10), wib(2, 17), WIB)
        assert window.definition is BATCH_1
        assert window.pickup_start == wib(2, 18)

    def test_late_preparation_moves_to_next_open_window(self):
        window = next_pickup_window(wib(2, 10), wib(2, 21), WIB)
        assert window.definition is BATCH_2
        assert window.pickup_start == wib(3, 8)

    def test_pickup_date_is_stored_as_utc_naive(self):
        window = pickup_batch_for(wib(2, 10), WIB)
        assert pickup_date_utc(window) == datetime(2026, 3, 2, 11, 0)


class TestOpenPickupWindows:

    def test_closed_window_is_left_out(self):
        windows = open_pickup_windows(wib(2, 21), wib(4, 0), WIB)
        assert [w.pickup_start for w in windows] == [wib(3, 8), wib(3, 18)]

    def test_window_in_progress_is_still_open(self):
        windows = open_pickup_windows(wib(2, 19, 59), wib(3, 0), WIB)
        assert [(w.batch_id, w.pickup_end) for w in windows] == [("batch_1", wib(2, 20))]

    def test_exact_pickup_end_is_closed(self):
        windows = open_pickup_windows(wib(2, 20), wib(3, 0), WIB)
        assert windows == []
