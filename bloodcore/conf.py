# bloodcore/conf.py
from django.conf import settings
from django.utils.module_loading import import_string


def default_thresholds():
    critical, low, good = getattr(settings, "BLOODCORE_DEFAULT_THRESHOLDS", (5, 15, 30))
    return critical, low, good


def default_location():
    return getattr(settings, "BLOODCORE_DEFAULT_LOCATION", "Main Storage")


def near_expiry_days():
    return getattr(settings, "BLOODCORE_NEAR_EXPIRY_DAYS", 7)


def donation_cooldown_days():
    return getattr(settings, "BLOODCORE_DONATION_COOLDOWN_DAYS", 56)


def request_expiry_buffer_days():
    return getattr(settings, "BLOODCORE_REQUEST_EXPIRY_BUFFER_DAYS", 7)


def emergency_expiry_buffer_hours():
    return getattr(settings, "BLOODCORE_EMERGENCY_EXPIRY_BUFFER_HOURS", 2)


def broadcast_notifier():
    path = getattr(settings, "BLOODCORE_BROADCAST_NOTIFIER", "bloodcore.notifications.log_notifier")
    return import_string(path)
