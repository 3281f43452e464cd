# bloodcore/emergencies.py
"""
Emergency request lifecycle.

Emergencies are created active with priority 5, broadcast to eligible donors,
collect responses, have a subset of responders confirmed by the requester and
resolve once completed confirmed donors have contributed enough units. The
timeline is the audit trail: every state change appends an event.
"""
import logging
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from . import conf, scoring
from .audit import log_event
from .compat import compatible_donors, is_compatible
from .exceptions import ConflictError, NotFoundError, NotRequesterError, StateError, ValidationError
from .forms import EmergencyRequestForm, EmergencyResponseForm
from .models import BroadcastRecipient, ConfirmedDonor, EmergencyRequest, EmergencyResponse, Profile

logger = logging.getLogger(__name__)

Status = EmergencyRequest.Status


# ------------------------ helpers ------------------------
def _locked(emergency_id):
    try:
        return EmergencyRequest.objects.select_for_update().get(pk=emergency_id)
    except EmergencyRequest.DoesNotExist:
        raise NotFoundError(f"Emergency request {emergency_id} not found")


def _pk(obj):
    return getattr(obj, "pk", obj)


def _ensure_requester(emergency, user, action):
    if emergency.requester_id != user.pk:
        raise NotRequesterError(f"Only the requester can {action}")


def _valid_contribution(units):
    return isinstance(units, int) and not isinstance(units, bool) and 1 <= units <= 5


def _stamp_resolution(emergency, user, received, notes, now):
    emergency.resolved_at = now
    emergency.resolved_by = user
    emergency.total_units_received = received
    emergency.donors_involved = emergency.confirmed_donors.count()
    emergency.resolution_notes = notes or ""


def apply_resolution(emergency, user, now=None):
    """
    Recompute the emergency's state from completed contributions.
    Resolves once received units cover the requirement; otherwise marks an
    active emergency as partially resolved as soon as some units arrived.
    """
    if emergency.status not in (Status.ACTIVE, Status.PARTIALLY_RESOLVED):
        return False
    now = now or timezone.now()
    received = emergency.units_received()

    if received >= emergency.units_required:
        emergency.status = Status.RESOLVED
        _stamp_resolution(emergency, user, received, "Emergency resolved - required blood units received", now)
        emergency.save()
        emergency.add_timeline_event(
            "emergency-resolved", "Emergency successfully resolved", user,
            total_units_received=received, donors_involved=emergency.donors_involved,
        )
        log_event(user, "emergency_resolved", emergency_id=emergency.pk, units=received)
        return True

    changed = False
    if received > 0 and emergency.status == Status.ACTIVE:
        emergency.status = Status.PARTIALLY_RESOLVED
        emergency.total_units_received = received
        emergency.save(update_fields=["status", "total_units_received"])
        emergency.add_timeline_event(
            "emergency-partially-resolved", f"{received} of {emergency.units_required} units received", user,
            units_received=received,
        )
        changed = True
    elif received != emergency.total_units_received:
        # stored total follows every completed contribution
        emergency.total_units_received = received
        emergency.save(update_fields=["total_units_received"])
        changed = True
    return changed


# ------------------------ broadcast ------------------------
def eligible_broadcast_donors(emergency):
    """
    Active, available donors whose type can give to the patient, living in the
    hospital's city and opted into emergency alerts. A filter, not a promise
    anyone answers.
    """
    return get_user_model().objects.filter(
        is_active=True,
        profile__role=Profile.Role.DONOR,
        profile__is_available_donor=True,
        profile__emergency_alerts=True,
        profile__blood_type__in=compatible_donors(emergency.patient_blood_type),
        profile__city__iexact=emergency.hospital_city,
    ).order_by("pk")


def broadcast_emergency(emergency, actor=None, notifier=None, now=None):
    """
    Notify every eligible donor. A failure for one donor is logged and recorded
    on its BroadcastRecipient row; the rest of the broadcast goes on.
    """
    notifier = notifier or conf.broadcast_notifier()
    now = now or timezone.now()
    delivered = 0
    recipients = list(eligible_broadcast_donors(emergency))

    for user in recipients:
        try:
            method = notifier(emergency, user) or ""
        except Exception as exc:
            logger.warning("Broadcast of emergency %s to user %s failed: %s", emergency.pk, user.pk, exc)
            BroadcastRecipient.objects.create(emergency=emergency, user=user, sent_at=now,
                                              delivered=False, error=str(exc)[:200])
            continue
        BroadcastRecipient.objects.create(emergency=emergency, user=user, method=method,
                                          sent_at=now, delivered=True)
        delivered += 1

    with transaction.atomic():
        locked = _locked(emergency.pk)
        locked.total_sent += len(recipients)
        locked.save(update_fields=["total_sent"])
        locked.add_timeline_event(
            "emergency-broadcasted", f"Emergency broadcasted to {len(recipients)} eligible donors", actor,
            donors_notified=len(recipients), delivered=delivered,
        )
    emergency.total_sent = locked.total_sent
    return recipients


# ------------------------ lifecycle ------------------------
def create_emergency(requester, data, broadcast=True, notifier=None, now=None):
    now = now or timezone.now()
    form = EmergencyRequestForm(data, now=now)
    if not form.is_valid():
        raise ValidationError(form.errors)

    with transaction.atomic():
        emergency = form.save(commit=False)
        emergency.requester = requester
        emergency.status = Status.ACTIVE
        emergency.priority = scoring.EMERGENCY_PRIORITY
        emergency.created_at = now
        emergency.expires_at = now + timedelta(
            hours=emergency.required_within_hours + conf.emergency_expiry_buffer_hours(),
        )
        emergency.save()
        emergency.add_timeline_event(
            "emergency-created", "Emergency blood request created", requester,
            severity=emergency.severity, units=emergency.units_required,
        )
        log_event(requester, "emergency_created", emergency_id=emergency.pk,
                  blood_type=emergency.patient_blood_type, units=emergency.units_required)

    if broadcast:
        broadcast_emergency(emergency, requester, notifier=notifier, now=now)
    return emergency


def respond_to_emergency(emergency_id, donor, data, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        emergency = _locked(_pk(emergency_id))
        if emergency.is_terminal:
            raise StateError("This emergency request is no longer active")
        if emergency.responses.filter(donor=donor).exists():
            raise ConflictError("You have already responded to this emergency")

        profile = getattr(donor, "profile", None)
        if profile is None or not profile.blood_type:
            raise NotFoundError("Donor has no registered blood type")
        if not is_compatible(profile.blood_type, emergency.patient_blood_type):
            raise ValidationError("Your blood type is not compatible with this emergency request",
                                  code="incompatible_blood_type")
        eligibility = profile.check_eligibility(now)
        if not eligibility.eligible:
            raise ValidationError(eligibility.reasons, code="donor_ineligible")

        form = EmergencyResponseForm(data)
        if not form.is_valid():
            raise ValidationError(form.errors)
        response = form.save(commit=False)
        response.emergency = emergency
        response.donor = donor
        response.responded_at = now
        response.save()

        emergency.total_responses += 1
        emergency.save(update_fields=["total_responses"])
        emergency.add_timeline_event(
            "donor-responded", f"{profile.full_name or donor.get_username()} responded to emergency", donor,
            availability=response.availability, blood_type=profile.blood_type,
        )
    return response


def confirm_donor(emergency_id, requester, donor, expected_arrival, notes="", now=None):
    now = now or timezone.now()
    with transaction.atomic():
        emergency = _locked(_pk(emergency_id))
        _ensure_requester(emergency, requester, "confirm donors")
        if emergency.is_terminal:
            raise StateError(f"This emergency has already been {emergency.status}")

        response = emergency.responses.filter(donor=donor).first()
        if response is None:
            raise NotFoundError("Donor response not found")
        if response.status == EmergencyResponse.Status.CONFIRMED or \
                emergency.confirmed_donors.filter(donor=donor).exists():
            raise ConflictError("This donor has already been confirmed")

        response.status = EmergencyResponse.Status.CONFIRMED
        response.confirmed_at = now
        response.save(update_fields=["status", "confirmed_at"])
        confirmed = ConfirmedDonor.objects.create(
            emergency=emergency, donor=donor, confirmed_at=now,
            expected_arrival=expected_arrival, notes=notes,
        )
        emergency.add_timeline_event("donor-confirmed", "Donor confirmed for emergency", donor)
    return confirmed


def update_donor_status(emergency_id, actor, donor, status, units_contributed=None, notes=None, now=None):
    """Requester or the donor themselves update a confirmed donor; resolution follows."""
    if status not in ConfirmedDonor.Status.values:
        raise ValidationError(f"Invalid donation status: {status!r}", code="invalid_status")
    if units_contributed is not None and not _valid_contribution(units_contributed):
        raise ValidationError("Units contributed must be between 1 and 5", code="invalid_units")
    now = now or timezone.now()

    with transaction.atomic():
        emergency = _locked(_pk(emergency_id))
        if actor.pk not in (emergency.requester_id, _pk(donor)):
            raise NotRequesterError("Access denied")
        if emergency.status in (Status.EXPIRED, Status.CANCELLED):
            raise StateError(f"This emergency is {emergency.status}")

        confirmed = emergency.confirmed_donors.filter(donor=donor).first()
        if confirmed is None:
            raise NotFoundError("Confirmed donor not found")
        if confirmed.donation_status == ConfirmedDonor.Status.COMPLETED and status != confirmed.donation_status:
            raise StateError("A completed donation cannot be changed")

        confirmed.donation_status = status
        if units_contributed:
            confirmed.units_contributed = units_contributed
        if notes:
            confirmed.notes = notes
        if status == ConfirmedDonor.Status.IN_PROGRESS and not confirmed.actual_arrival:
            confirmed.actual_arrival = now
        confirmed.save()

        response_status = {
            ConfirmedDonor.Status.IN_PROGRESS: EmergencyResponse.Status.ARRIVED,
            ConfirmedDonor.Status.COMPLETED: EmergencyResponse.Status.DONATED,
        }.get(status)
        if response_status:
            emergency.responses.filter(donor=donor).update(status=response_status)

        emergency.add_timeline_event(
            "donor-status-updated", f"Donor status updated to {status}", actor,
            donor_id=_pk(donor), new_status=status, units_contributed=units_contributed,
        )
        apply_resolution(emergency, actor, now)
    return emergency


def set_emergency_status(emergency_id, requester, status, resolution_notes="", patient_outcome="", now=None):
    """
    Requester-driven transitions: cancel, expire or resolve. A manual resolution
    still needs the received units to cover the requirement.
    """
    if status not in (Status.CANCELLED, Status.EXPIRED, Status.RESOLVED):
        raise ValidationError(f"Status cannot be set manually: {status!r}", code="invalid_status")
    if patient_outcome and patient_outcome not in EmergencyRequest.Outcome.values:
        raise ValidationError(f"Invalid patient outcome: {patient_outcome!r}", code="invalid_outcome")
    now = now or timezone.now()

    with transaction.atomic():
        emergency = _locked(_pk(emergency_id))
        _ensure_requester(emergency, requester, "update emergency status")
        if emergency.is_terminal:
            raise StateError(f"This emergency is already {emergency.status}")

        received = emergency.units_received()
        if status == Status.RESOLVED and received < emergency.units_required:
            raise StateError(
                f"Cannot resolve: {received} of {emergency.units_required} units received"
            )

        emergency.status = status
        if status in (Status.RESOLVED, Status.CANCELLED):
            _stamp_resolution(emergency, requester, received, resolution_notes, now)
        if patient_outcome:
            emergency.patient_outcome = patient_outcome
        emergency.broadcast_active = False
        emergency.save()
        emergency.add_timeline_event(
            "status-changed", f"Emergency status changed to {status}", requester, new_status=status,
        )
        log_event(requester, "emergency_status_changed", emergency_id=emergency.pk, status=status)
    return emergency


def expire_overdue_emergencies(now=None):
    now = now or timezone.now()
    expired = 0
    open_ids = EmergencyRequest.objects.exclude(status__in=EmergencyRequest.TERMINAL) \
        .filter(expires_at__lte=now).values_list("pk", flat=True)
    for emergency_id in open_ids:
        with transaction.atomic():
            emergency = _locked(emergency_id)
            if emergency.is_terminal:
                continue
            emergency.status = Status.EXPIRED
            emergency.broadcast_active = False
            emergency.save(update_fields=["status", "broadcast_active"])
            emergency.add_timeline_event("emergency-expired", "Emergency expired before resolution")
            expired += 1
    return expired


# ------------------------ queries ------------------------
def sort_by_urgency(emergencies):
    return sorted(emergencies, key=lambda e: e.urgency_level(), reverse=True)
