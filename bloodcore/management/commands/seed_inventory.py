# bloodcore/management/commands/seed_inventory.py
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from bloodcore import inventory
from bloodcore.compat import BLOOD_TYPE_CODES


class Command(BaseCommand):
    help = "Seed initial inventory: top up every blood type to N available units (default 100)."

    def add_arguments(self, parser):
        parser.add_argument("--per-type", type=int, default=100,
                            help="Target available units per blood type (default: 100)")
        parser.add_argument("--expiry-days", type=int, default=42,
                            help="Expiry offset in days for seeded batches (default: 42)")
        parser.add_argument("--reset", action="store_true",
                            help="Draw down all live stock (logged as removals) before seeding")

    def handle(self, *args, **opts):
        per_type = opts["per_type"]
        expiry_days = opts["expiry_days"]

        now = timezone.now()

        if opts["reset"]:
            # batches are kept for audit: live stock is drawn down, never deleted
            self.stdout.write(self.style.WARNING("Drawing down ALL live stock..."))
            for bt in BLOOD_TYPE_CODES:
                live = inventory.get_inventory(bt).available_units(now)
                if live:
                    inventory.remove_stock(bt, live, reason="Seed reset", now=now)
                    self.stdout.write(f"{bt}: removed {live} units.")

        expiry_at = now + timedelta(days=expiry_days)

        created_total = 0
        for bt in BLOOD_TYPE_CODES:
            current = inventory.get_inventory(bt).available_units(now)
            to_add = max(0, per_type - current)
            if to_add == 0:
                self.stdout.write(f"{bt}: already has {current}, skipping.")
                continue

            result = inventory.add_stock(bt, to_add, expiry_at, location="Seed Stock", now=now)
            created_total += to_add
            self.stdout.write(self.style.SUCCESS(
                f"{bt}: added {to_add} units in {result.batch_id} (status {result.status})."
            ))

        self.stdout.write(self.style.SUCCESS(f"Done. Added {created_total} unit(s) total."))
