from datetime import timedelta

import pytest

from bloodcore import emergencies
from bloodcore.exceptions import ConflictError, NotFoundError, NotRequesterError, StateError, ValidationError
from bloodcore.models import BroadcastRecipient, ConfirmedDonor, EmergencyRequest, EmergencyResponse, TimelineEvent
from tests.conftest import make_user

pytestmark = pytest.mark.django_db

Status = EmergencyRequest.Status


@pytest.fixture()
def emergency(requester, emergency_data, now):
    return emergencies.create_emergency(requester, emergency_data, broadcast=False, now=now)


def _confirm(emergency, requester, donor, data, now):
    emergencies.respond_to_emergency(emergency, donor, data, now=now)
    return emergencies.confirm_donor(emergency, requester, donor, now + timedelta(minutes=45), now=now)


def _events(emergency):
    return list(emergency.timeline.values_list("event", flat=True))


def test_create_emergency(emergency, emergency_data, now):
    assert emergency.status == Status.ACTIVE
    assert emergency.priority == 5
    assert emergency.expires_at == now + timedelta(hours=8)
    assert emergency.whole_blood
    assert _events(emergency) == ["emergency-created"]


def test_broadcast_reaches_eligible_donors_only(requester, emergency_data, now):
    make_user("match", blood_type="O-", city="haifa")
    make_user("elsewhere", blood_type="O-", city="Tel Aviv")
    make_user("incompatible", blood_type="B+")
    make_user("muted", blood_type="A+", emergency_alerts=False)
    make_user("busy", blood_type="A+", is_available_donor=False)
    make_user("requester2", role="REQUESTER", blood_type="A+")
    sent = []

    emergency = emergencies.create_emergency(
        requester, emergency_data, notifier=lambda e, u: sent.append(u.username) or "sms", now=now,
    )

    assert sent == ["match"]
    emergency.refresh_from_db()
    assert emergency.total_sent == 1
    assert BroadcastRecipient.objects.get(emergency=emergency).method == "sms"
    assert _events(emergency) == ["emergency-created", "emergency-broadcasted"]


def test_broadcast_continues_after_a_failed_notification(emergency, now):
    for name in ("first", "second", "third"):
        make_user(name, blood_type="A+")

    def notifier(emergency, user):
        if user.username == "second":
            raise ConnectionError("gateway down")
        return "push"

    recipients = emergencies.broadcast_emergency(emergency, notifier=notifier, now=now)

    assert [u.username for u in recipients] == ["first", "second", "third"]
    rows = {r.user.username: r for r in BroadcastRecipient.objects.filter(emergency=emergency)}
    assert [name for name, r in rows.items() if r.delivered] == ["first", "third"]
    assert rows["second"].error == "gateway down"
    emergency.refresh_from_db()
    assert emergency.total_sent == 3


def test_resolution_after_contributions_cover_requirement(emergency, requester, emergency_response_data, now):
    first = make_user("first", blood_type="A+")
    second = make_user("second", blood_type="O+")
    _confirm(emergency, requester, first, emergency_response_data, now)
    _confirm(emergency, requester, second, emergency_response_data, now)

    emergencies.update_donor_status(emergency, requester, first, "completed", units_contributed=2, now=now)
    emergency.refresh_from_db()
    assert emergency.status == Status.PARTIALLY_RESOLVED

    emergencies.update_donor_status(emergency, second, second, "completed", units_contributed=1, now=now)
    emergency.refresh_from_db()
    assert emergency.status == Status.RESOLVED
    assert emergency.total_units_received == 3
    assert emergency.donors_involved == 2
    assert emergency.resolved_by == second
    assert emergency.resolved_at == now
    assert _events(emergency)[-1] == "emergency-resolved"
    assert emergency.responses.get(donor=first).status == EmergencyResponse.Status.DONATED


def test_stored_total_follows_partial_contributions(requester, emergency_data, emergency_response_data, now):
    emergency = emergencies.create_emergency(requester, dict(emergency_data, units_required=5),
                                             broadcast=False, now=now)
    first = make_user("first", blood_type="A+")
    second = make_user("second", blood_type="O+")
    _confirm(emergency, requester, first, emergency_response_data, now)
    _confirm(emergency, requester, second, emergency_response_data, now)

    emergencies.update_donor_status(emergency, requester, first, "completed", units_contributed=1, now=now)
    emergencies.update_donor_status(emergency, requester, second, "completed", units_contributed=2, now=now)

    emergency.refresh_from_db()
    assert emergency.status == Status.PARTIALLY_RESOLVED
    assert emergency.total_units_received == emergency.units_received() == 3


@pytest.mark.parametrize("units", ["2", 2.0, True, 0, 6])
def test_bad_units_contributed_is_a_validation_error(emergency, requester, donor, emergency_response_data,
                                                     now, units):
    _confirm(emergency, requester, donor, emergency_response_data, now)
    with pytest.raises(ValidationError):
        emergencies.update_donor_status(emergency, requester, donor, "completed", units_contributed=units, now=now)
    assert ConfirmedDonor.objects.get(emergency=emergency, donor=donor).donation_status == "scheduled"


def test_in_progress_records_arrival(emergency, requester, donor, emergency_response_data, now):
    _confirm(emergency, requester, donor, emergency_response_data, now)
    emergencies.update_donor_status(emergency, donor, donor, "in-progress", now=now)
    confirmed = ConfirmedDonor.objects.get(emergency=emergency, donor=donor)
    assert confirmed.actual_arrival == now


def test_manual_resolution_needs_units(emergency, requester, donor, emergency_response_data, now):
    with pytest.raises(StateError):
        emergencies.set_emergency_status(emergency, requester, Status.RESOLVED)

    _confirm(emergency, requester, donor, emergency_response_data, now)
    emergencies.update_donor_status(emergency, requester, donor, "completed", units_contributed=3, now=now)
    emergency.refresh_from_db()
    assert emergency.status == Status.RESOLVED


def test_requester_cancels_with_outcome(emergency, requester, now):
    emergencies.set_emergency_status(emergency, requester, Status.CANCELLED,
                                     resolution_notes="Patient transferred", patient_outcome="referred", now=now)
    emergency.refresh_from_db()
    assert emergency.status == Status.CANCELLED
    assert emergency.patient_outcome == "referred"
    assert not emergency.broadcast_active
    assert _events(emergency)[-1] == "status-changed"

    with pytest.raises(StateError):
        emergencies.set_emergency_status(emergency, requester, Status.EXPIRED)


def test_only_requester_confirms(emergency, donor, emergency_response_data, now):
    emergencies.respond_to_emergency(emergency, donor, emergency_response_data, now=now)
    with pytest.raises(NotRequesterError):
        emergencies.confirm_donor(emergency, donor, donor, now)


def test_confirm_without_response_and_twice(emergency, requester, donor, emergency_response_data, now):
    with pytest.raises(NotFoundError):
        emergencies.confirm_donor(emergency, requester, donor, now)
    _confirm(emergency, requester, donor, emergency_response_data, now)
    with pytest.raises(ConflictError):
        emergencies.confirm_donor(emergency, requester, donor, now)


def test_duplicate_emergency_response(emergency, donor, emergency_response_data, now):
    emergencies.respond_to_emergency(emergency, donor, emergency_response_data, now=now)
    with pytest.raises(ConflictError):
        emergencies.respond_to_emergency(emergency, donor, emergency_response_data, now=now)
    emergency.refresh_from_db()
    assert emergency.total_responses == 1


def test_timeline_is_append_only(emergency):
    event = emergency.timeline.get()
    event.description = "rewritten"
    with pytest.raises(StateError):
        event.save()
    with pytest.raises(StateError):
        event.delete()
    assert TimelineEvent.objects.get().description == "Emergency blood request created"


def test_expire_overdue_emergencies(emergency, now):
    assert emergencies.expire_overdue_emergencies(now) == 0
    assert emergencies.expire_overdue_emergencies(now + timedelta(hours=8)) == 1
    emergency.refresh_from_db()
    assert emergency.status == Status.EXPIRED
    assert _events(emergency)[-1] == "emergency-expired"


def test_sort_by_urgency(requester, emergency_data, now):
    mild = emergencies.create_emergency(requester, dict(emergency_data, severity="moderate",
                                                        required_within_hours=48), broadcast=False, now=now)
    dire = emergencies.create_emergency(requester, emergency_data, broadcast=False, now=now)
    assert emergencies.sort_by_urgency([mild, dire]) == [dire, mild]
