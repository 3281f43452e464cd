# bloodcore/notifications.py
import logging

logger = logging.getLogger(__name__)


def log_notifier(emergency, user):
    """
    Default broadcast notifier: delivery is handled by an external service,
    so here the alert is only logged. Return the delivery method used.
    """
    logger.info(
        "Emergency %s (%s, %s) alert for donor %s",
        emergency.pk, emergency.patient_blood_type, emergency.hospital_city, user.pk,
    )
    return "log"
