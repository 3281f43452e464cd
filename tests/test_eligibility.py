from datetime import date, timedelta

from bloodcore.eligibility import (
    AGE_REASON, COOLDOWN_REASON, MEDICAL_REASON, WEIGHT_REASON,
    age_in_years, check_eligibility, cooldown_status, registration_age_ok,
)


def test_adult_donor_is_eligible(now):
    result = check_eligibility(date(1990, 1, 1), 70, None, True, now=now)
    assert result.eligible
    assert result.reasons == []


def test_seventeen_year_old_is_rejected_for_age(now):
    dob = (now - timedelta(days=17 * 365 + 30)).date()
    result = check_eligibility(dob, 70, None, True, now=now)
    assert not result.eligible
    assert result.reasons == [AGE_REASON]


def test_recent_donation_is_rejected_for_cooldown(now):
    result = check_eligibility(date(1990, 1, 1), 70, now - timedelta(days=10), True, now=now)
    assert not result.eligible
    assert result.reasons == [COOLDOWN_REASON]


def test_reasons_accumulate(now):
    dob = (now - timedelta(days=17 * 365)).date()
    result = check_eligibility(dob, 48, now - timedelta(days=10), False, now=now)
    assert not result.eligible
    assert result.reasons == [AGE_REASON, WEIGHT_REASON, COOLDOWN_REASON, MEDICAL_REASON]


def test_missing_biometrics_fail(now):
    result = check_eligibility(None, None, None, True, now=now)
    assert result.reasons == [AGE_REASON, WEIGHT_REASON]


def test_age_uses_365_day_years(now):
    assert age_in_years(now - timedelta(days=18 * 365), now) == 18
    assert age_in_years(now - timedelta(days=18 * 365 - 1), now) == 17


def test_cooldown_status(now):
    assert cooldown_status(None, now) == (True, 0)
    assert cooldown_status(now - timedelta(days=10), now) == (False, 46)
    assert cooldown_status(now - timedelta(days=56), now) == (True, 0)
    # a plain date counts from midnight
    assert cooldown_status((now - timedelta(days=60)).date(), now).can_donate


def test_registration_floor_is_looser_than_donation_floor(now):
    dob = (now - timedelta(days=17 * 365)).date()
    assert registration_age_ok(dob, now)
    assert not check_eligibility(dob, 70, None, True, now=now).eligible
    assert not registration_age_ok((now - timedelta(days=15 * 365)).date(), now)
