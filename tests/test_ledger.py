from datetime import timedelta
from types import SimpleNamespace

import pytest

from bloodcore import ledger


def batch(units, days, status=ledger.AVAILABLE, now=None):
    return SimpleNamespace(units=units, status=status, expiry_at=now + timedelta(days=days))


@pytest.fixture()
def batches(now):
    return [
        batch(20, 65, now=now),
        batch(25, 60, now=now),
        batch(4, -1, now=now),
        batch(9, 10, status=ledger.USED, now=now),
        batch(3, -5, status=ledger.EXPIRED, now=now),
    ]


def test_derived_figures(batches, now):
    assert ledger.available_units(batches, now) == 45
    assert ledger.expired_units(batches, now) == 7
    assert ledger.next_expiry(batches, now) == now + timedelta(days=60)
    assert ledger.expiring_soon_units(batches + [batch(2, 3, now=now)], now, 7) == 2


def test_fifo_plan_drains_soonest_expiry_first(batches, now):
    draws = ledger.plan_fifo_draw(batches, 30, now)
    assert [(d.batch.units, d.units, d.exhausts) for d in draws] == [(25, 25, True), (20, 5, False)]


def test_fifo_plan_exact_batch(batches, now):
    draws = ledger.plan_fifo_draw(batches, 25, now)
    assert len(draws) == 1 and draws[0].exhausts


@pytest.mark.parametrize("available, expected", [
    (0, ledger.STATUS_CRITICAL),
    (5, ledger.STATUS_CRITICAL),
    (6, ledger.STATUS_LOW),
    (15, ledger.STATUS_LOW),
    (30, ledger.STATUS_MEDIUM),
    (31, ledger.STATUS_GOOD),
])
def test_stock_status(available, expected, now):
    thresholds = ledger.Thresholds(5, 15, 30)
    batches = [batch(available, 30, now=now)] if available else [batch(3, 30, ledger.USED, now=now)]
    assert ledger.stock_status(batches, thresholds, now) == expected


def test_never_stocked_is_empty(now):
    assert ledger.stock_status([], ledger.Thresholds(5, 15, 30), now) == ledger.STATUS_EMPTY


@pytest.mark.parametrize("values", [(5, 5, 30), (10, 5, 30), (5, 15, 15), (-1, 5, 10), (1.5, 5, 10)])
def test_validate_thresholds_rejects_bad_order(values):
    with pytest.raises(ValueError):
        ledger.validate_thresholds(*values)


def test_sweepable_only_live_status(batches, now):
    assert [b.units for b in ledger.sweepable(batches, now)] == [4]


def test_shelf_life(now):
    assert ledger.shelf_life_expiry(now) == now + timedelta(days=35)
    assert ledger.shelf_life_expiry(now, "platelets") == now + timedelta(days=5)
