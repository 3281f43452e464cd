# bloodcore/management/commands/sweep_expired.py
from django.core.management.base import BaseCommand

from bloodcore import blood_requests, donations, emergencies, inventory


class Command(BaseCommand):
    help = "Expire out-of-date batches, overdue requests and emergencies, and missed donations."

    def handle(self, *args, **opts):
        sweep = inventory.sweep_expired()
        for row in sweep.by_blood_type:
            self.stdout.write(f"{row['blood_type']}: {row['expired_units']} unit(s) in {row['batch_count']} batch(es) expired.")
        for bt in sweep.failed:
            self.stdout.write(self.style.ERROR(f"{bt}: sweep failed, see logs."))

        requests = blood_requests.expire_overdue_requests()
        emergency_count = emergencies.expire_overdue_emergencies()
        missed = donations.expire_missed_donations()

        self.stdout.write(self.style.SUCCESS(
            f"Done. {sweep.total_expired_units} unit(s), {requests} request(s), "
            f"{emergency_count} emergency(ies), {missed} donation(s) expired."
        ))
