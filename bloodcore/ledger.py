# bloodcore/ledger.py
"""
Pure computations over a blood type's batches.

Every aggregate figure of an inventory (available units, expired units,
status label, next expiry) is derived here from the live batch list on each
read. Nothing is cached on the Inventory row, so the figures cannot drift
from batch state.

A batch is anything with `units`, `status` and `expiry_at` attributes.
"""
from collections import namedtuple
from datetime import timedelta

AVAILABLE = "available"
RESERVED = "reserved"
EXPIRED = "expired"
USED = "used"

STATUS_EMPTY = "Empty"
STATUS_CRITICAL = "Critical"
STATUS_LOW = "Low"
STATUS_MEDIUM = "Medium"
STATUS_GOOD = "Good"

SHELF_LIFE_DAYS = {
    "whole": 35,
    "rbc": 42,
    "platelets": 5,
    "plasma": 365,
}

Thresholds = namedtuple("Thresholds", ["critical", "low", "good"])
Draw = namedtuple("Draw", ["batch", "units", "exhausts"])


def is_live(batch, now) -> bool:
    return batch.status == AVAILABLE and batch.expiry_at > now


def available_units(batches, now) -> int:
    return sum(b.units for b in batches if is_live(b, now))


def expired_units(batches, now) -> int:
    return sum(b.units for b in batches if b.status != USED and b.expiry_at <= now)


def expiring_soon_units(batches, now, days) -> int:
    cutoff = now + timedelta(days=days)
    return sum(b.units for b in batches if is_live(b, now) and b.expiry_at <= cutoff)


def live_batches_by_expiry(batches, now) -> list:
    return sorted((b for b in batches if is_live(b, now)), key=lambda b: b.expiry_at)


def next_expiry(batches, now):
    live = live_batches_by_expiry(batches, now)
    return live[0].expiry_at if live else None


def validate_thresholds(critical, low, good) -> Thresholds:
    if not all(isinstance(v, int) and v >= 0 for v in (critical, low, good)):
        raise ValueError("Thresholds must be non-negative integers")
    if not critical < low < good:
        raise ValueError("Thresholds must satisfy critical < low < good")
    return Thresholds(critical, low, good)


def stock_status(batches, thresholds, now) -> str:
    # a type that was never stocked is Empty, not Critical
    batches = list(batches)
    if not batches:
        return STATUS_EMPTY
    available = available_units(batches, now)
    if available <= thresholds.critical:
        return STATUS_CRITICAL
    if available <= thresholds.low:
        return STATUS_LOW
    if available <= thresholds.good:
        return STATUS_MEDIUM
    return STATUS_GOOD


def plan_fifo_draw(batches, units, now) -> list:
    """
    Walk live batches soonest-expiry first and decide how much each gives.
    The caller must already know that `units` does not exceed what is available;
    whole batches are exhausted before the next one is touched, and the last
    batch is only partially drawn.
    """
    remaining = units
    draws = []
    for batch in live_batches_by_expiry(batches, now):
        if remaining <= 0:
            break
        if batch.units <= remaining:
            draws.append(Draw(batch, batch.units, True))
            remaining -= batch.units
        else:
            draws.append(Draw(batch, remaining, False))
            remaining = 0
    return draws


def sweepable(batches, now) -> list:
    return [b for b in batches if b.status == AVAILABLE and b.expiry_at <= now]


def shelf_life_expiry(collected_at, component="whole"):
    return collected_at + timedelta(days=SHELF_LIFE_DAYS.get(component, SHELF_LIFE_DAYS["whole"]))
