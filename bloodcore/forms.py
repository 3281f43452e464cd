# bloodcore/forms.py
from django import forms
from django.core.validators import MinLengthValidator, RegexValidator
from django.utils import timezone

from .models import (
    BloodRequest, EmergencyRequest, RequestResponse, EmergencyResponse, Donation,
)

# ---------------- Validators ----------------
name_validator = RegexValidator(regex=r"^[^\W\d_]+(?:[\s'.\-]+[^\W\d_]+)*\.?$",
                                message="Name may contain letters, spaces, apostrophes, dots and hyphens only.")
phone_validator = RegexValidator(regex=r"^\+?[\d\s\-()]{7,20}$",
                                 message="Enter a valid phone number.")


class _NowMixin:
    """Forms that compare dates against "now" take it as a keyword, so callers can pin time."""

    def __init__(self, *args, now=None, **kwargs):
        self.now = now or timezone.now()
        super().__init__(*args, **kwargs)


# ==================== Requests ====================
class BloodRequestForm(_NowMixin, forms.ModelForm):
    patient_name = forms.CharField(label="Patient name", max_length=120, validators=[name_validator])
    contact_number = forms.CharField(label="Contact number", validators=[phone_validator])
    hospital_contact = forms.CharField(label="Hospital contact", validators=[phone_validator])

    class Meta:
        model = BloodRequest
        fields = [
            "patient_name", "patient_age", "patient_gender", "patient_blood_type",
            "contact_number", "relationship",
            "hospital_name", "hospital_address", "hospital_city", "hospital_area",
            "hospital_contact", "doctor_name",
            "units_required", "urgency", "required_by", "purpose", "medical_condition",
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["urgency"].required = False

    def clean_urgency(self):
        return self.cleaned_data.get("urgency") or BloodRequest.Urgency.MEDIUM

    def clean_required_by(self):
        required_by = self.cleaned_data["required_by"]
        if required_by <= self.now:
            raise forms.ValidationError("Required by date must be in the future.")
        return required_by


class EmergencyRequestForm(_NowMixin, forms.ModelForm):
    COMPONENTS = ("whole_blood", "red_blood_cells", "platelets", "plasma")

    patient_name = forms.CharField(label="Patient name", max_length=120, validators=[name_validator])
    contact_number = forms.CharField(label="Contact number", validators=[phone_validator])
    hospital_contact = forms.CharField(label="Hospital contact", validators=[phone_validator])

    class Meta:
        model = EmergencyRequest
        fields = [
            "patient_name", "patient_age", "patient_gender", "patient_blood_type", "contact_number",
            "emergency_contact_name", "emergency_contact_phone",
            "emergency_type", "severity", "description", "time_of_incident",
            "hospital_name", "hospital_address", "hospital_city", "hospital_area",
            "hospital_contact", "emergency_department", "doctor_name",
            "units_required", "required_within_hours",
            "whole_blood", "red_blood_cells", "platelets", "plasma",
            "broadcast_radius_km",
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["severity"].required = False
        self.fields["broadcast_radius_km"].required = False

    def clean_severity(self):
        return self.cleaned_data.get("severity") or EmergencyRequest.Severity.CRITICAL

    def clean_broadcast_radius_km(self):
        return self.cleaned_data.get("broadcast_radius_km") or 50

    def clean_time_of_incident(self):
        when = self.cleaned_data["time_of_incident"]
        if when > self.now:
            raise forms.ValidationError("Time of incident cannot be in the future.")
        return when

    def clean(self):
        data = super().clean()
        # whole blood unless another component was asked for
        if not any(data.get(c) for c in self.COMPONENTS):
            data["whole_blood"] = True
        return data


# ==================== Responses ====================
class RequestResponseForm(forms.ModelForm):
    class Meta:
        model = RequestResponse
        fields = ["message", "availability", "contact_method"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["contact_method"].required = False

    def clean_contact_method(self):
        return self.cleaned_data.get("contact_method") or RequestResponse.Contact.BOTH


class EmergencyResponseForm(forms.ModelForm):
    class Meta:
        model = EmergencyResponse
        fields = ["message", "availability", "current_city", "estimated_arrival", "contact_method"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["contact_method"].required = False
        self.fields["current_city"].required = True
        self.fields["current_city"].validators.append(MinLengthValidator(2))

    def clean_contact_method(self):
        return self.cleaned_data.get("contact_method") or EmergencyResponse.Contact.PHONE


# ==================== Donations ====================
class DonationForm(_NowMixin, forms.ModelForm):
    class Meta:
        model = Donation
        fields = ["blood_type", "amount_ml", "appointment_at", "hospital", "hospital_address", "city", "notes"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["amount_ml"].required = False

    def clean_amount_ml(self):
        return self.cleaned_data.get("amount_ml") or 450

    def clean_appointment_at(self):
        when = self.cleaned_data["appointment_at"]
        if when <= self.now:
            raise forms.ValidationError("Appointment must be in the future.")
        return when


class PreScreeningForm(forms.ModelForm):
    class Meta:
        model = Donation
        fields = ["hemoglobin", "systolic", "diastolic", "pulse", "temperature",
                  "screening_weight_kg", "screening_passed", "screening_notes"]


class TestResultsForm(forms.ModelForm):
    class Meta:
        model = Donation
        fields = ["hiv_test", "hepatitis_b_test", "hepatitis_c_test", "syphilis_test",
                  "malaria_test", "tested_by", "tests_approved"]
