# config/settings.py
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"
ALLOWED_HOSTS = os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "bloodcore",
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("BLOODCORE_DB", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# -------------------- bloodcore --------------------
BLOODCORE_DEFAULT_THRESHOLDS = (5, 15, 30)
BLOODCORE_DEFAULT_LOCATION = "Main Storage"
BLOODCORE_NEAR_EXPIRY_DAYS = 7
BLOODCORE_DONATION_COOLDOWN_DAYS = 56
BLOODCORE_REQUEST_EXPIRY_BUFFER_DAYS = 7
BLOODCORE_EMERGENCY_EXPIRY_BUFFER_HOURS = 2
BLOODCORE_BROADCAST_NOTIFIER = "bloodcore.notifications.log_notifier"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "{asctime} {levelname} {name}: {message}", "style": "{"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "bloodcore": {"handlers": ["console"], "level": os.getenv("BLOODCORE_LOG_LEVEL", "INFO")},
    },
}
