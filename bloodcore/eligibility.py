# bloodcore/eligibility.py
from collections import namedtuple
from datetime import date, datetime

from django.utils import timezone

from . import conf

MIN_AGE = 18
MAX_AGE = 65
MIN_WEIGHT_KG = 50

# registration is looser than the donation check on purpose
REGISTRATION_MIN_AGE = 16
REGISTRATION_MIN_WEIGHT_KG = 45

AGE_REASON = f"Age must be between {MIN_AGE} and {MAX_AGE} years"
WEIGHT_REASON = f"Weight must be at least {MIN_WEIGHT_KG} kg"
COOLDOWN_REASON = "Must wait at least 8 weeks between donations"
MEDICAL_REASON = "Medical history indicates ineligibility"

Eligibility = namedtuple("Eligibility", ["eligible", "reasons"])
Cooldown = namedtuple("Cooldown", ["can_donate", "days_until_eligible"])


def _elapsed_days(earlier, now):
    if not isinstance(earlier, datetime):
        earlier = datetime(earlier.year, earlier.month, earlier.day, tzinfo=now.tzinfo)
    return (now - earlier).total_seconds() / 86400


def age_in_years(date_of_birth, now=None) -> int:
    """Whole years on a 365-day year, the approximation used everywhere in bloodcore."""
    now = now or timezone.now()
    return int(_elapsed_days(date_of_birth, now) // 365)


def cooldown_status(last_donation, now=None) -> Cooldown:
    if not last_donation:
        return Cooldown(True, 0)
    now = now or timezone.now()
    cooldown = conf.donation_cooldown_days()
    days_since = int(_elapsed_days(last_donation, now))
    if days_since >= cooldown:
        return Cooldown(True, 0)
    return Cooldown(False, cooldown - days_since)


def check_eligibility(date_of_birth, weight_kg, last_donation, medically_eligible, now=None) -> Eligibility:
    """
    Evaluate every donation rule and collect all failing ones, so the caller
    can show each blocking factor at once.
    """
    now = now or timezone.now()
    reasons = []

    age = age_in_years(date_of_birth, now) if date_of_birth else None
    if age is None or age < MIN_AGE or age > MAX_AGE:
        reasons.append(AGE_REASON)

    if weight_kg is None or weight_kg < MIN_WEIGHT_KG:
        reasons.append(WEIGHT_REASON)

    if not cooldown_status(last_donation, now).can_donate:
        reasons.append(COOLDOWN_REASON)

    if not medically_eligible:
        reasons.append(MEDICAL_REASON)

    return Eligibility(not reasons, reasons)


def registration_age_ok(date_of_birth: date, now=None) -> bool:
    age = _elapsed_days(date_of_birth, now or timezone.now()) / 365
    return REGISTRATION_MIN_AGE <= age <= MAX_AGE
