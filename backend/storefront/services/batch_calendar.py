# Overview: Pure batch calendar; maps a timestamp to its pickup batch and phase.

"""
Pickup Batch Calendar

Two recurring batches per 24h cycle, in venue wall-clock time:

    BATCH 1 (day)    active 06:00-18:00, cutoff 15:00, pickup 18:00-20:00 same day
    BATCH 2 (night)  active 18:00-06:00, cutoff 03:00, pickup 08:00-12:00 next day

A batch *instance* is anchored on the calendar date its active window starts.
Batch 2 wraps midnight: 23:30 on the 1st and 02:00 on the 2nd both belong to
the Batch 2 instance anchored on the 1st.

BOUNDARIES (all windows are half-open, [start, end)):
- A timestamp equal to a window start belongs to that window.
- A timestamp equal to the cutoff is past cutoff (14:59:59 is in time,
  15:00:00 rolls to the next batch).

PHASES (computeStatus), ordered:
    upcoming     now < start
    active       start <= now < cutoff
    cutoff       cutoff <= now < end
    preparation  end <= now < pickup_start   (empty for Batch 1)
    pickup       pickup_start <= now < pickup_end
    completed    now >= pickup_end

Batch membership is never stored; it is recomputed from timestamps.
Naive datetimes are UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from ..time_utils import to_venue, to_utc_naive

DEFAULT_VENUE_TIMEZONE = "Asia/Jakarta"

PHASE_UPCOMING = "upcoming"
PHASE_ACTIVE = "active"
PHASE_CUTOFF = "cutoff"
PHASE_PREPARATION = "preparation"
PHASE_PICKUP = "pickup"
PHASE_COMPLETED = "completed"

PHASES = (
    PHASE_UPCOMING,
    PHASE_ACTIVE,
    PHASE_CUTOFF,
    PHASE_PREPARATION,
    PHASE_PICKUP,
    PHASE_COMPLETED,
)


@dataclass(frozen=True)
class BatchDefinition:
    """
    Static batch configuration. Offsets are in days relative to the anchor
    date (the date the active window starts).
    """
    batch_id: str
    display_name: str
    start: time
    end: time
    end_offset: int
    cutoff: time
    cutoff_offset: int
    pickup_start: time
    pickup_end: time
    pickup_offset: int


BATCH_1 = BatchDefinition(
    batch_id="batch_1",
    display_name="Batch 1 (Siang)",
    start=time(6, 0),
    end=time(18, 0),
    end_offset=0,
    cutoff=time(15, 0),
    cutoff_offset=0,
    pickup_start=time(18, 0),
    pickup_end=time(20, 0),
    pickup_offset=0,
)

BATCH_2 = BatchDefinition(
    batch_id="batch_2",
    display_name="Batch 2 (Malam)",
    start=time(18, 0),
    end=time(6, 0),
    end_offset=1,
    cutoff=time(3, 0),
    cutoff_offset=1,
    pickup_start=time(8, 0),
    pickup_end=time(12, 0),
    pickup_offset=1,
)

BATCHES = (BATCH_1, BATCH_2)


@dataclass(frozen=True)
class BatchWindow:
    """One concrete batch instance. All datetimes are venue-aware."""
    definition: BatchDefinition
    anchor_date: date
    start_time: datetime
    end_time: datetime
    cutoff_time: datetime
    pickup_start: datetime
    pickup_end: datetime

    @property
    def batch_id(self) -> str:
        return self.definition.batch_id

    def next_window(self) -> "BatchWindow":
        if self.definition is BATCH_1:
            return build_window(BATCH_2, self.anchor_date, self.start_time.tzinfo)
        return build_window(BATCH_1, self.anchor_date + timedelta(days=1), self.start_time.tzinfo)

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "name": self.definition.display_name,
            "anchor_date": self.anchor_date.isoformat(),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "cutoff_time": self.cutoff_time.isoformat(),
            "pickup_start": self.pickup_start.isoformat(),
            "pickup_end": self.pickup_end.isoformat(),
        }


def _at(anchor: date, offset: int, clock: time, tz) -> datetime:
    return datetime.combine(anchor + timedelta(days=offset), clock, tzinfo=tz)


def build_window(definition: BatchDefinition, anchor_date: date, tz) -> BatchWindow:
    return BatchWindow(
        definition=definition,
        anchor_date=anchor_date,
        start_time=_at(anchor_date, 0, definition.start, tz),
        end_time=_at(anchor_date, definition.end_offset, definition.end, tz),
        cutoff_time=_at(anchor_date, definition.cutoff_offset, definition.cutoff, tz),
        pickup_start=_at(anchor_date, definition.pickup_offset, definition.pickup_start, tz),
        pickup_end=_at(anchor_date, definition.pickup_offset, definition.pickup_end, tz),
    )


def _zone(tz: ZoneInfo | str | None) -> ZoneInfo:
    if tz is None:
        return ZoneInfo(DEFAULT_VENUE_TIMEZONE)
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def resolve_batch(timestamp: datetime, tz: ZoneInfo | str | None = None) -> BatchWindow:
    """
    Return the batch instance whose active window contains `timestamp`.

    Total and deterministic: every instant falls in exactly one active
    window, since the two windows tile the day.
    """
    zone = _zone(tz)
    local = to_venue(timestamp, zone)
    clock = local.time()
    today = local.date()

    if BATCH_1.start <= clock < BATCH_1.end:
        return build_window(BATCH_1, today, zone)
    if clock >= BATCH_2.start:
        return build_window(BATCH_2, today, zone)
    # Early-morning tail of the previous evening's batch
    return build_window(BATCH_2, today - timedelta(days=1), zone)


def compute_status(window: BatchWindow, now: datetime) -> str:
    """Phase of `window` at `now`. Pure step function; see module docstring."""
    local_now = to_venue(now, window.start_time.tzinfo)

    if local_now < window.start_time:
        return PHASE_UPCOMING
    if local_now < window.cutoff_time:
        return PHASE_ACTIVE
    if local_now < window.end_time:
        return PHASE_CUTOFF
    if local_now < window.pickup_start:
        return PHASE_PREPARATION
    if local_now < window.pickup_end:
        return PHASE_PICKUP
    return PHASE_COMPLETED


def is_past_cutoff(window: BatchWindow, timestamp: datetime) -> bool:
    return to_venue(timestamp, window.start_time.tzinfo) >= window.cutoff_time


def pickup_batch_for(timestamp: datetime, tz: ZoneInfo | str | None = None) -> BatchWindow:
    """
    Batch whose pickup serves an order placed at `timestamp`.

    Orders placed at or after the cutoff roll to the following batch.
    """
    window = resolve_batch(timestamp, tz)
    if is_past_cutoff(window, timestamp):
        return window.next_window()
    return window


def next_pickup_window(placed_at: datetime, now: datetime, tz: ZoneInfo | str | None = None) -> BatchWindow:
    """
    Pickup batch for an order placed at `placed_at`, evaluated at `now`.

    If that batch's pickup window already ended (the order was prepared
    late), the earliest batch whose pickup window has not ended yet is used.
    """
    window = pickup_batch_for(placed_at, tz)
    local_now = to_venue(now, window.start_time.tzinfo)
    while window.pickup_end <= local_now:
        window = window.next_window()
    return window


def pickup_date_utc(window: BatchWindow) -> datetime:
    """UTC-naive pickup start, as persisted on Order.pickup_date."""
    return to_utc_naive(window.pickup_start)


def current_batches(now: datetime, tz: ZoneInfo | str | None = None) -> list[dict]:
    """Current batch and the one after it, each with its phase at `now`."""
    current = resolve_batch(now, tz)
    upcoming = current.next_window()
    result = []
    for window in (current, upcoming):
        data = window.to_dict()
        data["status"] = compute_status(window, now)
        data["is_current"] = window is current
        result.append(data)
    return result


def open_pickup_windows(now: datetime, until: datetime, tz: ZoneInfo | str | None = None) -> list[BatchWindow]:
    """
    Batch windows whose pickup has not ended at `now` and starts before
    `until`, earliest first.
    """
    zone = _zone(tz)
    local_now = to_venue(now, zone)
    local_until = to_venue(until, zone)
    window = resolve_batch(now - timedelta(days=1), zone)
    result = []
    while window.pickup_start < local_until:
        if window.pickup_end > local_now:
            result.append(window)
        window = window.next_window()
    return result
