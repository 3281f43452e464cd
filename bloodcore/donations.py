# bloodcore/donations.py
"""
Donation appointments: schedule, pre-screen, test, complete.

Completing a donation issues the certificate and blood bag ids (once), updates
the donor's cooldown and moves any linked accepted/confirmed donor to
completed, which in turn recomputes the request's fulfillment or the
emergency's resolution.
"""
import logging
from datetime import timedelta

from django.db import transaction
from django.forms.models import model_to_dict
from django.utils import timezone
from django.utils.crypto import get_random_string

from . import blood_requests, emergencies
from .audit import log_event
from .compat import is_compatible
from .exceptions import NotFoundError, NotRequesterError, StateError, ValidationError
from .forms import DonationForm, PreScreeningForm, TestResultsForm
from .models import AcceptedDonor, BloodRequest, ConfirmedDonor, Donation, EmergencyRequest

logger = logging.getLogger(__name__)

ID_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MISSED_AFTER = timedelta(hours=24)

LAB_TESTS = ("hiv_test", "hepatitis_b_test", "hepatitis_c_test", "syphilis_test", "malaria_test")

CLOSED_REQUEST = (BloodRequest.Status.EXPIRED, BloodRequest.Status.CANCELLED)
CLOSED_EMERGENCY = (EmergencyRequest.Status.EXPIRED, EmergencyRequest.Status.CANCELLED)


def certificate_number(now):
    return f"BC{now:%Y%m}{get_random_string(6, allowed_chars=ID_CHARS)}"


def blood_bag_id(blood_type, now):
    code = blood_type.replace("+", "P").replace("-", "N")
    return f"BB{now:%Y%m%d}{code}{get_random_string(4, allowed_chars=ID_CHARS)}"


def _locked(donation_id):
    try:
        return Donation.objects.select_for_update().get(pk=getattr(donation_id, "pk", donation_id))
    except Donation.DoesNotExist:
        raise NotFoundError(f"Donation {donation_id} not found")


def _scheduled(donation):
    if donation.status != Donation.Status.SCHEDULED:
        raise StateError(f"This donation is already {donation.status}")


def _bind(form_class, donation, updates):
    # partial updates: start from what is stored
    data = model_to_dict(donation, fields=form_class._meta.fields)
    data.update(updates)
    form = form_class(data, instance=donation)
    if not form.is_valid():
        raise ValidationError(form.errors)
    return form


def schedule_donation(donor, data, blood_request=None, emergency_request=None, now=None):
    now = now or timezone.now()
    profile = getattr(donor, "profile", None)
    if profile is None or not profile.blood_type:
        raise NotFoundError("Donor has no registered blood type")

    form = DonationForm(data, now=now)
    if not form.is_valid():
        raise ValidationError(form.errors)
    donation = form.save(commit=False)

    if donation.blood_type != profile.blood_type:
        raise ValidationError("Blood type must match your registered blood type", code="blood_type_mismatch")
    for linked in (blood_request, emergency_request):
        if linked is not None and not is_compatible(profile.blood_type, linked.patient_blood_type):
            raise ValidationError("Your blood type is not compatible with the linked request",
                                  code="incompatible_blood_type")
    eligibility = profile.check_eligibility(now)
    if not eligibility.eligible:
        raise ValidationError(eligibility.reasons, code="donor_ineligible")

    donation.donor = donor
    donation.status = Donation.Status.SCHEDULED
    donation.blood_request = blood_request
    donation.emergency_request = emergency_request
    donation.save()
    log_event(donor, "donation_scheduled", donation_id=donation.pk, appointment_at=donation.appointment_at.isoformat())
    return donation


def record_prescreening(donation_id, updates):
    with transaction.atomic():
        donation = _locked(donation_id)
        _scheduled(donation)
        return _bind(PreScreeningForm, donation, updates).save()


def record_test_results(donation_id, updates, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        donation = _locked(donation_id)
        _scheduled(donation)
        donation = _bind(TestResultsForm, donation, updates).save(commit=False)
        donation.tested_at = now
        donation.save()
    return donation


def _complete_linked(donation, now):
    donor = donation.donor
    if donation.blood_request_id:
        linked = AcceptedDonor.objects.filter(request_id=donation.blood_request_id, donor=donor) \
            .exclude(status=AcceptedDonor.Status.COMPLETED) \
            .exclude(request__status__in=CLOSED_REQUEST).exists()
        if linked:
            blood_requests.update_accepted_donor_status(
                donation.blood_request_id, donor, donor, AcceptedDonor.Status.COMPLETED, now=now,
            )
    if donation.emergency_request_id:
        linked = ConfirmedDonor.objects.filter(emergency_id=donation.emergency_request_id, donor=donor) \
            .exclude(donation_status=ConfirmedDonor.Status.COMPLETED) \
            .exclude(emergency__status__in=CLOSED_EMERGENCY).exists()
        if linked:
            emergencies.update_donor_status(
                donation.emergency_request_id, donor, donor, ConfirmedDonor.Status.COMPLETED, now=now,
            )


def complete_donation(donation_id, actor=None, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        donation = _locked(donation_id)
        _scheduled(donation)
        positive = [t for t in LAB_TESTS if getattr(donation, t) == Donation.TestResult.POSITIVE]
        if positive:
            raise StateError(f"Positive lab results: {', '.join(positive)}")

        donation.status = Donation.Status.COMPLETED
        donation.donation_date = now
        # ids are issued once and never regenerated
        if not donation.certificate_number:
            donation.certificate_number = certificate_number(now)
        if not donation.blood_bag_id:
            donation.blood_bag_id = blood_bag_id(donation.blood_type, now)
        donation.save()

        donation.donor.profile.record_donation(now)
        _complete_linked(donation, now)
        log_event(actor or donation.donor, "donation_completed", donation_id=donation.pk,
                  certificate=donation.certificate_number, bag=donation.blood_bag_id)
    return donation


def cancel_donation(donation_id, actor):
    with transaction.atomic():
        donation = _locked(donation_id)
        if actor.pk != donation.donor_id and not actor.is_staff:
            raise NotRequesterError("Only the donor can cancel this donation")
        _scheduled(donation)
        donation.status = Donation.Status.CANCELLED
        donation.save(update_fields=["status"])
    return donation


def expire_missed_donations(now=None):
    """Scheduled appointments more than a day in the past become expired."""
    now = now or timezone.now()
    count = Donation.objects.filter(
        status=Donation.Status.SCHEDULED, appointment_at__lt=now - MISSED_AFTER,
    ).update(status=Donation.Status.EXPIRED)
    if count:
        logger.info("Expired %d missed donation appointment(s)", count)
    return count
