# bloodcore/inventory.py
"""
Inventory ledger services.

Every mutation runs in a transaction and locks the Inventory row of the blood
type first (select_for_update), so concurrent add/remove/sweep calls on the
same type are serialized instead of over-drawing each other.
"""
import logging
from collections import namedtuple

from django.db import transaction
from django.utils import timezone
from django.utils.crypto import get_random_string

from . import conf, ledger
from .audit import log_event
from .compat import BLOOD_TYPE_CODES, plan_dispense
from .exceptions import InsufficientStock, NotFoundError, ValidationError
from .models import BloodBatch, Inventory, StockLog

logger = logging.getLogger(__name__)

StockResult = namedtuple("StockResult", ["blood_type", "available_units", "status", "batch_id"])
SweepResult = namedtuple("SweepResult", ["total_expired_units", "by_blood_type", "failed"])


def _check_blood_type(blood_type):
    if blood_type not in BLOOD_TYPE_CODES:
        raise ValidationError(f"Invalid blood type: {blood_type!r}", code="invalid_blood_type")


def _check_units(units):
    if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
        raise ValidationError("Units must be a positive integer", code="invalid_units")


def new_batch_id(blood_type, now=None):
    now = now or timezone.now()
    suffix = get_random_string(5, allowed_chars="abcdefghijklmnopqrstuvwxyz0123456789")
    return f"{blood_type}-{int(now.timestamp() * 1000)}-{suffix}"


def get_inventory(blood_type):
    """Return the inventory of a blood type, creating it on first access."""
    _check_blood_type(blood_type)
    critical, low, good = conf.default_thresholds()
    inventory, _ = Inventory.objects.get_or_create(
        blood_type=blood_type,
        defaults={"critical_threshold": critical, "low_threshold": low, "good_threshold": good},
    )
    return inventory


def _locked_inventory(blood_type, create=False):
    _check_blood_type(blood_type)
    if create:
        get_inventory(blood_type)
    try:
        return Inventory.objects.select_for_update().get(blood_type=blood_type)
    except Inventory.DoesNotExist:
        raise NotFoundError(f"Blood type {blood_type} not found in inventory")


def _touch(inventory, actor, now):
    inventory.last_updated = now
    inventory.updated_by = actor
    inventory.save(update_fields=["last_updated", "updated_by"])


def add_stock(blood_type, units, expiry_at, donor=None, location=None, actor=None, now=None):
    _check_units(units)
    now = now or timezone.now()
    if expiry_at <= now:
        raise ValidationError("Expiry date must be in the future", code="expired_on_arrival")

    with transaction.atomic():
        inventory = _locked_inventory(blood_type, create=True)
        batch = BloodBatch.objects.create(
            inventory=inventory,
            batch_id=new_batch_id(blood_type, now),
            units=units,
            initial_units=units,
            expiry_at=expiry_at,
            collected_at=now,
            donor=donor,
            location=location or conf.default_location(),
            status=BloodBatch.Status.AVAILABLE,
        )
        _touch(inventory, actor, now)
        StockLog.objects.create(
            blood_type=blood_type, action=StockLog.Action.ADD, quantity=units,
            batches={batch.batch_id: units}, actor=actor,
        )
        log_event(actor, "stock_added", blood_type=blood_type, units=units, batch_id=batch.batch_id)

    return StockResult(blood_type, inventory.available_units(now), inventory.status(now), batch.batch_id)


def _draw(inventory, units, now):
    """FIFO-by-expiry removal on a locked inventory; all or nothing."""
    batches = list(inventory.batches.filter(status=BloodBatch.Status.AVAILABLE))
    available = ledger.available_units(batches, now)
    if units > available:
        raise InsufficientStock(inventory.blood_type, units, available)

    taken = {}
    for draw in ledger.plan_fifo_draw(batches, units, now):
        batch = draw.batch
        if draw.exhausts:
            batch.status = BloodBatch.Status.USED
            batch.save(update_fields=["status"])
        else:
            batch.units -= draw.units
            batch.save(update_fields=["units"])
        taken[batch.batch_id] = draw.units
    return taken


def remove_stock(blood_type, units, reason="", actor=None, now=None):
    _check_units(units)
    now = now or timezone.now()

    with transaction.atomic():
        inventory = _locked_inventory(blood_type)
        taken = _draw(inventory, units, now)
        _touch(inventory, actor, now)
        StockLog.objects.create(
            blood_type=blood_type, action=StockLog.Action.REMOVE, quantity=units,
            reason=reason or "Used for patient care", batches=taken, actor=actor,
        )
        log_event(actor, "stock_removed", blood_type=blood_type, units=units, reason=reason, batches=taken)

    return StockResult(blood_type, inventory.available_units(now), inventory.status(now), None)


def dispense_compatible(recipient_type, units, reason="", actor=None, now=None):
    """
    Serve `units` for a recipient from every compatible donor type, following
    plan_dispense, in one transaction. Fails without touching stock if the
    compatible types together cannot cover the request.
    """
    _check_blood_type(recipient_type)
    _check_units(units)
    now = now or timezone.now()

    with transaction.atomic():
        inventories = {
            inv.blood_type: inv
            for inv in Inventory.objects.select_for_update().order_by("blood_type")
        }
        counts = {bt: inv.available_units(now) for bt, inv in inventories.items()}
        plan, shortfall = plan_dispense(recipient_type, units, counts)
        if shortfall:
            raise InsufficientStock(recipient_type, units, units - shortfall)

        for donor_type, take in plan.items():
            inventory = inventories[donor_type]
            taken = _draw(inventory, take, now)
            _touch(inventory, actor, now)
            StockLog.objects.create(
                blood_type=donor_type, action=StockLog.Action.REMOVE, quantity=take,
                reason=reason or f"Dispensed for {recipient_type}", batches=taken, actor=actor,
            )
        log_event(actor, "stock_dispensed", recipient_type=recipient_type, units=units, plan=plan)

    return plan


def update_thresholds(blood_type, critical, low, good, actor=None):
    try:
        thresholds = ledger.validate_thresholds(critical, low, good)
    except ValueError as exc:
        raise ValidationError(str(exc), code="invalid_thresholds")

    with transaction.atomic():
        inventory = _locked_inventory(blood_type)
        inventory.critical_threshold, inventory.low_threshold, inventory.good_threshold = thresholds
        inventory.updated_by = actor
        inventory.last_updated = timezone.now()
        inventory.save()
        log_event(actor, "thresholds_updated", blood_type=blood_type, **thresholds._asdict())
    return inventory.thresholds


def _sweep_one(blood_type, actor, now):
    with transaction.atomic():
        inventory = _locked_inventory(blood_type)
        expiring = ledger.sweepable(inventory.batches.filter(status=BloodBatch.Status.AVAILABLE), now)
        if not expiring:
            return None
        units = sum(b.units for b in expiring)
        BloodBatch.objects.filter(pk__in=[b.pk for b in expiring]).update(status=BloodBatch.Status.EXPIRED)
        _touch(inventory, actor, now)
        StockLog.objects.create(
            blood_type=blood_type, action=StockLog.Action.EXPIRE, quantity=units,
            batches={b.batch_id: b.units for b in expiring}, actor=actor,
        )
        return {"blood_type": blood_type, "expired_units": units, "batch_count": len(expiring)}


def sweep_expired(actor=None, now=None):
    """
    Flip every available batch whose expiry has passed to `expired`.
    Idempotent. One blood type failing does not stop the others; failures are
    logged and reported in `failed`.
    """
    now = now or timezone.now()
    by_type = []
    failed = []
    for blood_type in Inventory.objects.order_by("blood_type").values_list("blood_type", flat=True):
        try:
            row = _sweep_one(blood_type, actor, now)
        except Exception:
            logger.warning("Expiry sweep failed for %s", blood_type, exc_info=True)
            failed.append(blood_type)
            continue
        if row:
            by_type.append(row)

    total = sum(row["expired_units"] for row in by_type)
    if by_type:
        log_event(actor, "expired_swept", total_expired_units=total,
                  blood_types=[row["blood_type"] for row in by_type])
    return SweepResult(total, by_type, failed)


def stock_overview(now=None):
    now = now or timezone.now()
    overview = {}
    for blood_type in BLOOD_TYPE_CODES:
        overview[blood_type] = get_inventory(blood_type).snapshot(now)
    return overview


def stock_alerts(now=None):
    """Blood types currently at Critical or Low level, most severe first."""
    overview = stock_overview(now)
    critical = [bt for bt, row in overview.items() if row["status"] == ledger.STATUS_CRITICAL]
    low = [bt for bt, row in overview.items() if row["status"] == ledger.STATUS_LOW]
    return critical + low
