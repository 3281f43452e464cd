# bloodcore/blood_requests.py
"""
Standard blood request lifecycle.

pending -> active (first response) -> partially-fulfilled -> fulfilled,
with expired/cancelled as the other terminal states. The fulfillment status
is recomputed from accepted donors by `apply_fulfillment` on every write
that can change it; nothing else sets `fulfilled`.
"""
from datetime import timedelta

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.crypto import get_random_string

from . import conf, scoring
from .audit import log_event
from .compat import is_compatible
from .exceptions import ConflictError, NotFoundError, NotRequesterError, StateError, ValidationError
from .forms import BloodRequestForm, RequestResponseForm
from .models import AcceptedDonor, BloodRequest, RequestResponse, RequestUpdate

Status = BloodRequest.Status

EDITABLE_FIELDS = {
    "units_required", "medical_condition",
    "hospital_name", "hospital_address", "hospital_city", "hospital_area",
    "hospital_contact", "doctor_name",
}


# ------------------------ helpers ------------------------
def _locked(request_id):
    try:
        return BloodRequest.objects.select_for_update().get(pk=request_id)
    except BloodRequest.DoesNotExist:
        raise NotFoundError(f"Blood request {request_id} not found")


def _pk(obj):
    return getattr(obj, "pk", obj)


def _ensure_requester(blood_request, user, action):
    if blood_request.requester_id != user.pk:
        raise NotRequesterError(f"Only the requester can {action}")


def _donor_profile(donor):
    profile = getattr(donor, "profile", None)
    if profile is None or not profile.blood_type:
        raise NotFoundError("Donor has no registered blood type")
    return profile


def add_update(blood_request, message, user, kind=RequestUpdate.Kind.GENERAL):
    return RequestUpdate.objects.create(request=blood_request, message=message, updated_by=user, kind=kind)


def apply_fulfillment(blood_request):
    """
    Recompute status from completed accepted donors. Returns True when the
    status changed. Terminal states other than fulfilled are left alone.
    """
    if blood_request.status in (Status.EXPIRED, Status.CANCELLED, Status.FULFILLED):
        return False
    fulfilled = blood_request.units_fulfilled()
    required = blood_request.units_required
    if fulfilled >= required:
        blood_request.status = Status.FULFILLED
        blood_request.save(update_fields=["status"])
        add_update(blood_request, "Request fulfilled - all required units secured",
                   blood_request.requester, RequestUpdate.Kind.STATUS_CHANGE)
        log_event(blood_request.requester, "request_fulfilled", request_id=blood_request.pk)
        return True
    if 0 < fulfilled < required and blood_request.status == Status.ACTIVE:
        blood_request.status = Status.PARTIALLY_FULFILLED
        blood_request.save(update_fields=["status"])
        return True
    return False


# ------------------------ lifecycle ------------------------
def create_request(requester, data, now=None):
    now = now or timezone.now()
    form = BloodRequestForm(data, now=now)
    if not form.is_valid():
        raise ValidationError(form.errors)

    with transaction.atomic():
        blood_request = form.save(commit=False)
        blood_request.requester = requester
        blood_request.status = Status.PENDING
        blood_request.priority = scoring.priority_for_urgency(blood_request.urgency)
        blood_request.created_at = now
        blood_request.expires_at = blood_request.required_by + timedelta(days=conf.request_expiry_buffer_days())
        blood_request.shareable_link = get_random_string(12).lower()
        blood_request.save()
        log_event(requester, "request_created", request_id=blood_request.pk,
                  blood_type=blood_request.patient_blood_type, units=blood_request.units_required,
                  urgency=blood_request.urgency)
    return blood_request


def respond_to_request(request_id, donor, data, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        blood_request = _locked(_pk(request_id))
        if blood_request.is_terminal:
            raise StateError("This blood request is no longer active")
        if blood_request.responses.filter(donor=donor).exists():
            raise ConflictError("You have already responded to this request")

        profile = _donor_profile(donor)
        if not is_compatible(profile.blood_type, blood_request.patient_blood_type):
            raise ValidationError("Your blood type is not compatible with this request",
                                  code="incompatible_blood_type")
        eligibility = profile.check_eligibility(now)
        if not eligibility.eligible:
            raise ValidationError(eligibility.reasons, code="donor_ineligible")

        form = RequestResponseForm(data)
        if not form.is_valid():
            raise ValidationError(form.errors)
        response = form.save(commit=False)
        response.request = blood_request
        response.donor = donor
        response.responded_at = now
        response.save()

        blood_request.response_count += 1
        if blood_request.status == Status.PENDING:
            blood_request.status = Status.ACTIVE
        blood_request.save(update_fields=["response_count", "status"])
    return response


def accept_donor(request_id, requester, donor, notes=""):
    with transaction.atomic():
        blood_request = _locked(_pk(request_id))
        _ensure_requester(blood_request, requester, "accept donors")
        if blood_request.is_terminal:
            raise StateError(f"This request is already {blood_request.status}")

        response = blood_request.responses.filter(donor=donor).first()
        if response is None:
            raise NotFoundError("Donor response not found")
        if response.status == RequestResponse.Status.ACCEPTED or \
                blood_request.accepted_donors.filter(donor=donor).exists():
            raise ConflictError("This donor has already been accepted")

        response.status = RequestResponse.Status.ACCEPTED
        response.save(update_fields=["status"])
        accepted = AcceptedDonor.objects.create(request=blood_request, donor=donor, notes=notes)
        add_update(blood_request, "Donor accepted for donation", requester, RequestUpdate.Kind.STATUS_CHANGE)
        apply_fulfillment(blood_request)
    return accepted


def update_accepted_donor_status(request_id, actor, donor, status, notes=None, now=None):
    """Requester or the donor themselves move an accepted donor along; fulfillment follows."""
    if status not in AcceptedDonor.Status.values:
        raise ValidationError(f"Invalid donation status: {status!r}", code="invalid_status")
    now = now or timezone.now()

    with transaction.atomic():
        blood_request = _locked(_pk(request_id))
        if actor.pk not in (blood_request.requester_id, _pk(donor)):
            raise NotRequesterError("Access denied")
        if blood_request.status in (Status.EXPIRED, Status.CANCELLED):
            raise StateError(f"This request is {blood_request.status}")

        accepted = blood_request.accepted_donors.filter(donor=donor).first()
        if accepted is None:
            raise NotFoundError("Accepted donor not found")
        if accepted.status == AcceptedDonor.Status.COMPLETED and status != accepted.status:
            raise StateError("A completed donation cannot be changed")

        accepted.status = status
        if notes:
            accepted.notes = notes
        if status == AcceptedDonor.Status.COMPLETED:
            accepted.donation_date = accepted.donation_date or now
            blood_request.responses.filter(donor=donor).update(status=RequestResponse.Status.COMPLETED)
        accepted.save()
        apply_fulfillment(blood_request)
    return blood_request


def update_request(request_id, requester, changes):
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(unknown))}", code="not_editable")

    with transaction.atomic():
        blood_request = _locked(_pk(request_id))
        _ensure_requester(blood_request, requester, "update this request")
        if blood_request.is_terminal:
            raise StateError(f"This request is already {blood_request.status}")
        for field, value in changes.items():
            setattr(blood_request, field, value)
        try:
            blood_request.full_clean(exclude=["requester"])
        except DjangoValidationError as exc:
            raise ValidationError(exc.message_dict)
        blood_request.save()
        add_update(blood_request, "Request updated", requester, RequestUpdate.Kind.REQUIREMENT_UPDATE)
        apply_fulfillment(blood_request)
    return blood_request


def cancel_request(request_id, requester):
    with transaction.atomic():
        blood_request = _locked(_pk(request_id))
        _ensure_requester(blood_request, requester, "cancel this request")
        if blood_request.is_terminal:
            raise StateError(f"This request is already {blood_request.status}")
        blood_request.status = Status.CANCELLED
        blood_request.save(update_fields=["status"])
        add_update(blood_request, "Request cancelled by requester", requester, RequestUpdate.Kind.STATUS_CHANGE)
        log_event(requester, "request_cancelled", request_id=blood_request.pk)
    return blood_request


def expire_overdue_requests(now=None):
    """Move open requests whose lifecycle end (`expires_at`) has passed to expired."""
    now = now or timezone.now()
    expired = 0
    past_end = Q(expires_at__lte=now) | Q(expires_at__isnull=True, required_by__lte=now)
    open_ids = BloodRequest.objects.exclude(status__in=BloodRequest.TERMINAL) \
        .filter(past_end).values_list("pk", flat=True)
    for request_id in open_ids:
        with transaction.atomic():
            blood_request = _locked(request_id)
            if blood_request.is_terminal or not blood_request.has_expired(now):
                continue
            blood_request.status = Status.EXPIRED
            blood_request.save(update_fields=["status"])
            add_update(blood_request, "Request expired", None, RequestUpdate.Kind.STATUS_CHANGE)
            expired += 1
    return expired


# ------------------------ queries ------------------------
def sort_by_urgency(requests, now=None):
    now = now or timezone.now()
    return sorted(requests, key=lambda r: r.urgency_score(now), reverse=True)


def open_requests_for_donor(donor, now=None):
    """Open requests this donor could answer, most urgent first."""
    profile = _donor_profile(donor)
    candidates = BloodRequest.objects.exclude(status__in=BloodRequest.TERMINAL) \
        .exclude(responses__donor=donor)
    matching = [r for r in candidates if is_compatible(profile.blood_type, r.patient_blood_type)]
    return sort_by_urgency(matching, now)
