import re
from datetime import timedelta

import pytest

from bloodcore import blood_requests, donations, emergencies
from bloodcore.exceptions import NotFoundError, NotRequesterError, StateError, ValidationError
from bloodcore.models import AcceptedDonor, BloodRequest, Donation, EmergencyRequest
from tests.conftest import make_user

pytestmark = pytest.mark.django_db


@pytest.fixture()
def donation_data(now):
    return {
        "blood_type": "O+",
        "appointment_at": now + timedelta(days=1),
        "hospital": "Rambam",
        "city": "Haifa",
    }


def test_schedule_donation(donor, donation_data, now):
    donation = donations.schedule_donation(donor, donation_data, now=now)
    assert donation.status == Donation.Status.SCHEDULED
    assert donation.amount_ml == 450
    assert not donation.certificate_issued
    assert donation.expiry_date is None


def test_schedule_requires_registered_type(donor, donation_data, now):
    donation_data["blood_type"] = "A+"
    with pytest.raises(ValidationError):
        donations.schedule_donation(donor, donation_data, now=now)


def test_schedule_rejects_past_appointment(donor, donation_data, now):
    donation_data["appointment_at"] = now - timedelta(hours=1)
    with pytest.raises(ValidationError):
        donations.schedule_donation(donor, donation_data, now=now)


def test_schedule_rejects_incompatible_link(requester, request_data, donation_data, now):
    b_donor = make_user("bdonor", blood_type="B+")
    blood_request = blood_requests.create_request(requester, request_data, now=now)
    with pytest.raises(ValidationError):
        donations.schedule_donation(b_donor, dict(donation_data, blood_type="B+"),
                                    blood_request=blood_request, now=now)


def test_complete_issues_ids_once_and_starts_cooldown(donor, donation_data, now):
    donation = donations.schedule_donation(donor, donation_data, now=now)
    later = now + timedelta(days=1)

    done = donations.complete_donation(donation, now=later)

    assert re.fullmatch(r"BC202506[A-Z0-9]{6}", done.certificate_number)
    assert re.fullmatch(r"BB20250603OP[A-Z0-9]{4}", done.blood_bag_id)
    assert done.expiry_date == later + timedelta(days=35)
    donor.profile.refresh_from_db()
    assert donor.profile.donation_count == 1
    assert donor.profile.last_donation_date == later
    assert not donor.profile.check_eligibility(later + timedelta(days=10)).eligible

    certificate = done.certificate_number
    with pytest.raises(StateError):
        donations.complete_donation(donation, now=later)
    done.refresh_from_db()
    assert done.certificate_number == certificate


def test_complete_moves_linked_accepted_donor(requester, request_data, donor, response_data, donation_data, now):
    blood_request = blood_requests.create_request(requester, dict(request_data, units_required=1), now=now)
    blood_requests.respond_to_request(blood_request, donor, response_data, now=now)
    blood_requests.accept_donor(blood_request, requester, donor)
    donation = donations.schedule_donation(donor, donation_data, blood_request=blood_request, now=now)

    donations.complete_donation(donation, now=now + timedelta(days=1))

    blood_request.refresh_from_db()
    assert blood_request.accepted_donors.get().status == AcceptedDonor.Status.COMPLETED
    assert blood_request.status == BloodRequest.Status.FULFILLED


def test_complete_moves_linked_confirmed_donor(requester, emergency_data, donor, emergency_response_data,
                                               donation_data, now):
    emergency = emergencies.create_emergency(requester, dict(emergency_data, units_required=1),
                                             broadcast=False, now=now)
    emergencies.respond_to_emergency(emergency, donor, emergency_response_data, now=now)
    emergencies.confirm_donor(emergency, requester, donor, now + timedelta(hours=1), now=now)
    donation = donations.schedule_donation(donor, donation_data, emergency_request=emergency, now=now)
    assert donation.is_emergency

    donations.complete_donation(donation, now=now + timedelta(hours=2))

    emergency.refresh_from_db()
    assert emergency.status == EmergencyRequest.Status.RESOLVED


def test_screening_and_tests_are_partial_updates(donor, donation_data, now):
    donation = donations.schedule_donation(donor, donation_data, now=now)

    donations.record_prescreening(donation, {"hemoglobin": "14.2", "pulse": 72})
    donations.record_prescreening(donation, {"screening_passed": True})
    donation.refresh_from_db()
    assert donation.pulse == 72
    assert donation.screening_passed

    with pytest.raises(ValidationError):
        donations.record_prescreening(donation, {"pulse": 140})

    tested = donations.record_test_results(donation, {"hiv_test": "negative", "tested_by": "Lab 3"}, now=now)
    assert tested.tested_at == now
    assert tested.malaria_test == Donation.TestResult.PENDING


def test_results_are_frozen_after_completion(donor, donation_data, now):
    donation = donations.schedule_donation(donor, donation_data, now=now)
    donations.record_test_results(donation, {"hiv_test": "negative"}, now=now)
    donations.complete_donation(donation, now=now)

    with pytest.raises(StateError):
        donations.record_test_results(donation, {"hiv_test": "positive"}, now=now)
    donation.refresh_from_db()
    assert donation.hiv_test == Donation.TestResult.NEGATIVE


def test_positive_result_blocks_completion(donor, donation_data, now):
    donation = donations.schedule_donation(donor, donation_data, now=now)
    donations.record_test_results(donation, {"malaria_test": "positive"}, now=now)
    with pytest.raises(StateError):
        donations.complete_donation(donation, now=now)


def test_cancel_and_expire(donor, donation_data, now):
    kept = donations.schedule_donation(donor, donation_data, now=now)
    missed = donations.schedule_donation(donor, donation_data, now=now)
    stranger = make_user("stranger")

    with pytest.raises(NotRequesterError):
        donations.cancel_donation(kept, stranger)
    assert donations.cancel_donation(kept, donor).status == Donation.Status.CANCELLED

    assert donations.expire_missed_donations(now + timedelta(days=3)) == 1
    missed.refresh_from_db()
    assert missed.status == Donation.Status.EXPIRED


def test_unknown_donation(now):
    with pytest.raises(NotFoundError):
        donations.complete_donation(987654, now=now)
