from datetime import date, datetime, timedelta, timezone

import pytest
from django.contrib.auth import get_user_model

from bloodcore.models import Profile

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def now():
    return NOW


def make_user(username, role=Profile.Role.DONOR, blood_type="O+", city="Haifa", **profile):
    user = get_user_model().objects.create_user(username=username, password="pass12345")
    defaults = {
        "full_name": username.title(),
        "date_of_birth": date(1990, 1, 1),
        "weight_kg": 70,
    }
    defaults.update(profile)
    Profile.objects.create(user=user, role=role, blood_type=blood_type, city=city, **defaults)
    return user


@pytest.fixture()
def requester(db):
    return make_user("requester", role=Profile.Role.REQUESTER, blood_type="")


@pytest.fixture()
def donor(db):
    return make_user("donor", blood_type="O+")


@pytest.fixture()
def request_data(now):
    return {
        "patient_name": "Dana Levi",
        "patient_age": 42,
        "patient_gender": "female",
        "patient_blood_type": "A+",
        "contact_number": "+972 50-123-4567",
        "relationship": "family",
        "hospital_name": "Rambam",
        "hospital_address": "8 HaAliya HaShniya St",
        "hospital_city": "Haifa",
        "hospital_area": "Bat Galim",
        "hospital_contact": "04-777-2111",
        "doctor_name": "Dr. Cohen",
        "units_required": 2,
        "urgency": "high",
        "required_by": now + timedelta(days=3),
        "purpose": "surgery",
    }


@pytest.fixture()
def emergency_data(now):
    return {
        "patient_name": "Omar Haddad",
        "patient_age": 30,
        "patient_gender": "male",
        "patient_blood_type": "A+",
        "contact_number": "+972 52-555-0101",
        "emergency_type": "accident",
        "severity": "critical",
        "description": "Multiple trauma after road accident",
        "time_of_incident": now - timedelta(hours=1),
        "hospital_name": "Rambam",
        "hospital_address": "8 HaAliya HaShniya St",
        "hospital_city": "Haifa",
        "hospital_area": "Bat Galim",
        "hospital_contact": "04-777-2111",
        "emergency_department": "Trauma",
        "doctor_name": "Dr. Cohen",
        "units_required": 3,
        "required_within_hours": 6,
    }


@pytest.fixture()
def response_data():
    return {"message": "I can come today", "availability": "immediate"}


@pytest.fixture()
def emergency_response_data():
    return {"availability": "within-1h", "current_city": "Haifa", "estimated_arrival": "30 minutes"}
