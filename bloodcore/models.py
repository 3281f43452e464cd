# bloodcore/models.py
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from . import conf, ledger, scoring
from .eligibility import (
    MAX_AGE, REGISTRATION_MIN_AGE, REGISTRATION_MIN_WEIGHT_KG,
    check_eligibility, registration_age_ok,
)
from .exceptions import StateError

# -------------------- Constants --------------------
BLOOD_TYPES = [
    ("A+", "A+"), ("A-", "A-"),
    ("B+", "B+"), ("B-", "B-"),
    ("AB+", "AB+"), ("AB-", "AB-"),
    ("O+", "O+"), ("O-", "O-"),
]

GENDERS = [("male", "Male"), ("female", "Female"), ("other", "Other")]


def validate_registration_age(value):
    if not registration_age_ok(value):
        raise DjangoValidationError(
            f"Age must be between {REGISTRATION_MIN_AGE} and {MAX_AGE} years"
        )


# -------------------- Inventory ledger --------------------
class Inventory(models.Model):
    blood_type = models.CharField("Blood type", max_length=3, choices=BLOOD_TYPES, unique=True)
    critical_threshold = models.PositiveIntegerField("Critical threshold", default=5)
    low_threshold = models.PositiveIntegerField("Low threshold", default=15)
    good_threshold = models.PositiveIntegerField("Good threshold", default=30)
    last_updated = models.DateTimeField("Last updated", default=timezone.now)
    updated_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL,
                                   null=True, blank=True, related_name="+")

    class Meta:
        ordering = ["blood_type"]
        verbose_name_plural = "inventories"

    def __str__(self):
        return f"{self.blood_type} inventory"

    @property
    def thresholds(self):
        return ledger.Thresholds(self.critical_threshold, self.low_threshold, self.good_threshold)

    def _batches(self):
        return list(self.batches.all())

    # derived figures: computed from batches on every read, never stored
    def available_units(self, now=None):
        return ledger.available_units(self._batches(), now or timezone.now())

    def status(self, now=None):
        return ledger.stock_status(self._batches(), self.thresholds, now or timezone.now())

    def snapshot(self, now=None):
        """Every derived figure from a single read of the batches."""
        now = now or timezone.now()
        batches = self._batches()
        return {
            "available": ledger.available_units(batches, now),
            "expired": ledger.expired_units(batches, now),
            "expiring_soon": ledger.expiring_soon_units(batches, now, conf.near_expiry_days()),
            "status": ledger.stock_status(batches, self.thresholds, now),
            "next_expiry": ledger.next_expiry(batches, now),
        }


class BloodBatch(models.Model):
    class Status(models.TextChoices):
        AVAILABLE = ledger.AVAILABLE, "Available"
        RESERVED = ledger.RESERVED, "Reserved"
        EXPIRED = ledger.EXPIRED, "Expired"
        USED = ledger.USED, "Used"

    inventory = models.ForeignKey(Inventory, on_delete=models.PROTECT, related_name="batches")
    batch_id = models.CharField("Batch ID", max_length=40, unique=True)
    units = models.PositiveIntegerField("Units")
    initial_units = models.PositiveIntegerField("Units at intake")
    expiry_at = models.DateTimeField("Expiry at", db_index=True)
    collected_at = models.DateTimeField("Collected at", default=timezone.now)
    donor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL,
                              null=True, blank=True, related_name="batches")
    location = models.CharField("Storage location", max_length=120, default="Main Storage")
    status = models.CharField("Status", max_length=10, choices=Status.choices,
                              default=Status.AVAILABLE, db_index=True)

    class Meta:
        ordering = ["expiry_at", "collected_at"]

    def __str__(self):
        return f"{self.batch_id} ({self.units}u, {self.status})"

    @property
    def blood_type(self):
        return self.inventory.blood_type


class StockLog(models.Model):
    class Action(models.TextChoices):
        ADD = "ADD", "Stock added"
        REMOVE = "REMOVE", "Stock removed"
        EXPIRE = "EXPIRE", "Expired"

    blood_type = models.CharField("Blood type", max_length=3, choices=BLOOD_TYPES)
    action = models.CharField("Action", max_length=10, choices=Action.choices)
    quantity = models.PositiveIntegerField("Quantity")
    reason = models.CharField("Reason", max_length=200, blank=True)
    batches = models.JSONField("Batch breakdown", default=dict)
    actor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL,
                              null=True, blank=True, related_name="+")
    created_at = models.DateTimeField("Created at", auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.action} {self.blood_type} x{self.quantity} ({self.created_at:%Y-%m-%d %H:%M})"


# -------------------- Users & audit --------------------
class Profile(models.Model):
    class Role(models.TextChoices):
        DONOR = "DONOR", "Donor"
        REQUESTER = "REQUESTER", "Requester"

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="profile")
    role = models.CharField("Role", max_length=12, choices=Role.choices)

    full_name = models.CharField("Full name", max_length=120, blank=True)
    blood_type = models.CharField("Blood type", max_length=3, choices=BLOOD_TYPES, blank=True)
    date_of_birth = models.DateField("Date of birth", null=True, blank=True,
                                     validators=[validate_registration_age])
    weight_kg = models.PositiveIntegerField(
        "Weight (kg)", null=True, blank=True,
        validators=[MinValueValidator(REGISTRATION_MIN_WEIGHT_KG), MaxValueValidator(200)],
    )
    city = models.CharField("City", max_length=80, blank=True)
    area = models.CharField("Area", max_length=80, blank=True)

    last_donation_date = models.DateTimeField("Last donation", null=True, blank=True)
    donation_count = models.PositiveIntegerField("Donations", default=0)
    has_chronic_diseases = models.BooleanField("Chronic diseases", default=False)
    medically_eligible = models.BooleanField("Medically eligible", default=True)

    is_available_donor = models.BooleanField("Available to donate", default=True)
    emergency_alerts = models.BooleanField("Emergency alerts", default=True)

    def __str__(self):
        return f"{self.user.get_username()} ({self.role})"

    def check_eligibility(self, now=None):
        return check_eligibility(
            self.date_of_birth, self.weight_kg, self.last_donation_date,
            self.medically_eligible, now=now,
        )

    def record_donation(self, when=None):
        self.last_donation_date = when or timezone.now()
        self.donation_count += 1
        self.save(update_fields=["last_donation_date", "donation_count"])


class AuditEvent(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    role = models.CharField("Role at time", max_length=20, blank=True)
    action = models.CharField("Action", max_length=50)
    details = models.JSONField("Details", default=dict, blank=True)
    created_at = models.DateTimeField("Created at", auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        who = self.user.get_username() if self.user else "system"
        return f"{self.created_at:%Y-%m-%d %H:%M} [{self.role}] {who} -> {self.action}"


# -------------------- Standard requests --------------------
class BloodRequest(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACTIVE = "active", "Active"
        PARTIALLY_FULFILLED = "partially-fulfilled", "Partially fulfilled"
        FULFILLED = "fulfilled", "Fulfilled"
        EXPIRED = "expired", "Expired"
        CANCELLED = "cancelled", "Cancelled"

    class Urgency(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"
        CRITICAL = "critical", "Critical"

    class Purpose(models.TextChoices):
        SURGERY = "surgery", "Surgery"
        ACCIDENT = "accident", "Accident"
        CANCER_TREATMENT = "cancer-treatment", "Cancer treatment"
        ANEMIA = "anemia", "Anemia"
        PREGNANCY = "pregnancy-complications", "Pregnancy complications"
        BLOOD_DISORDER = "blood-disorder", "Blood disorder"
        ORGAN_TRANSPLANT = "organ-transplant", "Organ transplant"
        OTHER = "other", "Other"

    class Relationship(models.TextChoices):
        SELF = "self", "Self"
        FAMILY = "family", "Family"
        FRIEND = "friend", "Friend"
        HOSPITAL = "hospital", "Hospital"
        DOCTOR = "doctor", "Doctor"
        OTHER = "other", "Other"

    TERMINAL = {Status.FULFILLED, Status.EXPIRED, Status.CANCELLED}

    requester = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE,
                                  related_name="blood_requests")

    patient_name = models.CharField("Patient name", max_length=120)
    patient_age = models.PositiveIntegerField("Patient age", validators=[MaxValueValidator(150)])
    patient_gender = models.CharField("Patient gender", max_length=10, choices=GENDERS)
    patient_blood_type = models.CharField("Patient blood type", max_length=3, choices=BLOOD_TYPES)
    contact_number = models.CharField("Contact number", max_length=30)
    relationship = models.CharField("Relationship", max_length=10, choices=Relationship.choices)

    hospital_name = models.CharField("Hospital name", max_length=120)
    hospital_address = models.CharField("Hospital address", max_length=200)
    hospital_city = models.CharField("Hospital city", max_length=80)
    hospital_area = models.CharField("Hospital area", max_length=80)
    hospital_contact = models.CharField("Hospital contact", max_length=30)
    doctor_name = models.CharField("Doctor name", max_length=120)

    units_required = models.PositiveIntegerField(
        "Units required", validators=[MinValueValidator(1), MaxValueValidator(10)],
    )
    urgency = models.CharField("Urgency", max_length=10, choices=Urgency.choices, default=Urgency.MEDIUM)
    required_by = models.DateTimeField("Required by")
    purpose = models.CharField("Purpose", max_length=30, choices=Purpose.choices)
    medical_condition = models.TextField("Medical condition", max_length=500, blank=True)

    status = models.CharField("Status", max_length=20, choices=Status.choices,
                              default=Status.PENDING, db_index=True)
    priority = models.PositiveSmallIntegerField(
        "Priority", default=1, validators=[MinValueValidator(1), MaxValueValidator(5)],
    )
    response_count = models.PositiveIntegerField("Responses", default=0)
    shareable_link = models.CharField("Shareable link", max_length=12, unique=True, null=True, blank=True)
    expires_at = models.DateTimeField("Expires at", null=True, blank=True)
    created_at = models.DateTimeField("Created at", default=timezone.now)

    class Meta:
        ordering = ["-priority", "-created_at"]
        indexes = [
            models.Index(fields=["patient_blood_type", "status", "required_by"]),
            models.Index(fields=["hospital_city", "hospital_area", "status"]),
        ]

    def __str__(self):
        return f"Req {self.patient_blood_type} x{self.units_required} ({self.urgency}) - {self.hospital_name}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL

    def units_fulfilled(self):
        return self.accepted_donors.filter(status=AcceptedDonor.Status.COMPLETED).count()

    def completion_percentage(self):
        return scoring.completion_percentage(self.units_fulfilled(), self.units_required, cap=False)

    def days_remaining(self, now=None):
        return scoring.days_remaining(self.required_by, now or timezone.now())

    def urgency_score(self, now=None):
        return scoring.urgency_score(self.urgency, self.required_by, now or timezone.now())

    def has_expired(self, now=None):
        # requests created through the service always carry expires_at
        end = self.expires_at or self.required_by
        return (now or timezone.now()) >= end


class RequestResponse(models.Model):
    class Availability(models.TextChoices):
        IMMEDIATE = "immediate", "Immediate"
        WITHIN_24H = "within-24h", "Within 24 hours"
        WITHIN_48H = "within-48h", "Within 48 hours"
        WITHIN_WEEK = "within-week", "Within a week"

    class Contact(models.TextChoices):
        PHONE = "phone", "Phone"
        EMAIL = "email", "Email"
        BOTH = "both", "Both"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"
        REJECTED = "rejected", "Rejected"
        COMPLETED = "completed", "Completed"

    request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name="responses")
    donor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="request_responses")
    message = models.CharField("Message", max_length=300, blank=True)
    availability = models.CharField("Availability", max_length=12, choices=Availability.choices)
    contact_method = models.CharField("Contact method", max_length=5, choices=Contact.choices,
                                      default=Contact.BOTH)
    status = models.CharField("Status", max_length=10, choices=Status.choices, default=Status.PENDING)
    responded_at = models.DateTimeField("Responded at", default=timezone.now)

    class Meta:
        ordering = ["responded_at"]
        constraints = [
            models.UniqueConstraint(fields=["request", "donor"], name="one_response_per_donor"),
        ]


class AcceptedDonor(models.Model):
    class Status(models.TextChoices):
        SCHEDULED = "scheduled", "Scheduled"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name="accepted_donors")
    donor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+")
    donation_date = models.DateTimeField("Donation date", null=True, blank=True)
    status = models.CharField("Status", max_length=10, choices=Status.choices, default=Status.SCHEDULED)
    notes = models.CharField("Notes", max_length=300, blank=True)
    accepted_at = models.DateTimeField("Accepted at", default=timezone.now)

    class Meta:
        ordering = ["accepted_at"]
        constraints = [
            models.UniqueConstraint(fields=["request", "donor"], name="one_acceptance_per_donor"),
        ]


class RequestUpdate(models.Model):
    class Kind(models.TextChoices):
        STATUS_CHANGE = "status-change", "Status change"
        REQUIREMENT_UPDATE = "requirement-update", "Requirement update"
        LOCATION_CHANGE = "location-change", "Location change"
        GENERAL = "general", "General"

    request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name="updates")
    message = models.CharField("Message", max_length=300)
    updated_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL,
                                   null=True, related_name="+")
    kind = models.CharField("Type", max_length=20, choices=Kind.choices, default=Kind.GENERAL)
    created_at = models.DateTimeField("Created at", default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]


# -------------------- Emergencies --------------------
class EmergencyRequest(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        PARTIALLY_RESOLVED = "partially-resolved", "Partially resolved"
        RESOLVED = "resolved", "Resolved"
        EXPIRED = "expired", "Expired"
        CANCELLED = "cancelled", "Cancelled"

    class Severity(models.TextChoices):
        CRITICAL = "critical", "Critical"
        SEVERE = "severe", "Severe"
        MODERATE = "moderate", "Moderate"

    class Kind(models.TextChoices):
        ACCIDENT = "accident", "Accident"
        SURGERY = "surgery", "Surgery"
        MASSIVE_BLEEDING = "massive-bleeding", "Massive bleeding"
        ORGAN_FAILURE = "organ-failure", "Organ failure"
        PREGNANCY = "pregnancy-complication", "Pregnancy complication"
        BLOOD_DISORDER = "blood-disorder", "Blood disorder"
        OTHER = "other", "Other"

    class Outcome(models.TextChoices):
        STABLE = "stable", "Stable"
        CRITICAL = "critical", "Critical"
        RECOVERED = "recovered", "Recovered"
        REFERRED = "referred", "Referred"
        UNKNOWN = "unknown", "Unknown"

    TERMINAL = {Status.RESOLVED, Status.EXPIRED, Status.CANCELLED}

    requester = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE,
                                  related_name="emergencies")

    patient_name = models.CharField("Patient name", max_length=120)
    patient_age = models.PositiveIntegerField("Patient age")
    patient_gender = models.CharField("Patient gender", max_length=10, choices=GENDERS)
    patient_blood_type = models.CharField("Patient blood type", max_length=3, choices=BLOOD_TYPES)
    contact_number = models.CharField("Contact number", max_length=30)
    emergency_contact_name = models.CharField("Emergency contact", max_length=120, blank=True)
    emergency_contact_phone = models.CharField("Emergency contact phone", max_length=30, blank=True)

    emergency_type = models.CharField("Emergency type", max_length=30, choices=Kind.choices)
    severity = models.CharField("Severity", max_length=10, choices=Severity.choices, default=Severity.CRITICAL)
    description = models.TextField("Description", max_length=500)
    time_of_incident = models.DateTimeField("Time of incident")

    hospital_name = models.CharField("Hospital name", max_length=120)
    hospital_address = models.CharField("Hospital address", max_length=200)
    hospital_city = models.CharField("Hospital city", max_length=80)
    hospital_area = models.CharField("Hospital area", max_length=80)
    hospital_contact = models.CharField("Hospital contact", max_length=30)
    emergency_department = models.CharField("Emergency department", max_length=120)
    doctor_name = models.CharField("Doctor in charge", max_length=120)

    units_required = models.PositiveIntegerField(
        "Units required", validators=[MinValueValidator(1), MaxValueValidator(20)],
    )
    required_within_hours = models.PositiveIntegerField(
        "Required within (hours)", validators=[MinValueValidator(1), MaxValueValidator(72)],
    )
    whole_blood = models.BooleanField("Whole blood", default=True)
    red_blood_cells = models.BooleanField("Red blood cells", default=False)
    platelets = models.BooleanField("Platelets", default=False)
    plasma = models.BooleanField("Plasma", default=False)

    status = models.CharField("Status", max_length=20, choices=Status.choices,
                              default=Status.ACTIVE, db_index=True)
    priority = models.PositiveSmallIntegerField("Priority", default=scoring.EMERGENCY_PRIORITY, editable=False)

    broadcast_active = models.BooleanField("Broadcast active", default=True)
    broadcast_radius_km = models.PositiveIntegerField(
        "Broadcast radius (km)", default=50, validators=[MinValueValidator(5), MaxValueValidator(100)],
    )
    total_sent = models.PositiveIntegerField("Alerts sent", default=0)
    total_responses = models.PositiveIntegerField("Responses", default=0)

    resolved_at = models.DateTimeField("Resolved at", null=True, blank=True)
    resolved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL,
                                    null=True, blank=True, related_name="+")
    total_units_received = models.PositiveIntegerField("Units received", default=0)
    donors_involved = models.PositiveIntegerField("Donors involved", default=0)
    resolution_notes = models.CharField("Resolution notes", max_length=500, blank=True)
    patient_outcome = models.CharField("Patient outcome", max_length=10, choices=Outcome.choices, blank=True)

    created_at = models.DateTimeField("Created at", default=timezone.now)
    expires_at = models.DateTimeField("Expires at", null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["patient_blood_type", "status"]),
            models.Index(fields=["hospital_city", "hospital_area", "status"]),
        ]

    def __str__(self):
        return f"Emergency {self.patient_blood_type} x{self.units_required} ({self.severity}) - {self.hospital_name}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL

    @property
    def deadline(self):
        return self.created_at + timedelta(hours=self.required_within_hours)

    def units_received(self):
        total = self.confirmed_donors.filter(
            donation_status=ConfirmedDonor.Status.COMPLETED,
        ).aggregate(total=models.Sum("units_contributed"))["total"]
        return total or 0

    def completion_percentage(self):
        return scoring.completion_percentage(self.units_received(), self.units_required)

    def hours_remaining(self, now=None):
        return scoring.hours_remaining(self.deadline, now or timezone.now())

    def urgency_level(self):
        return scoring.emergency_urgency_level(self.severity, self.required_within_hours, self.units_required)

    def add_timeline_event(self, event, description="", actor=None, **metadata):
        return self.timeline.create(event=event, description=description, actor=actor, metadata=metadata)


class EmergencyResponse(models.Model):
    class Availability(models.TextChoices):
        IMMEDIATE = "immediate", "Immediate"
        WITHIN_1H = "within-1h", "Within 1 hour"
        WITHIN_2H = "within-2h", "Within 2 hours"
        WITHIN_4H = "within-4h", "Within 4 hours"

    class Contact(models.TextChoices):
        PHONE = "phone", "Phone"
        EMERGENCY_CONTACT = "emergency-contact", "Emergency contact"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        ON_WAY = "on-way", "On the way"
        ARRIVED = "arrived", "Arrived"
        DONATED = "donated", "Donated"
        DECLINED = "declined", "Declined"

    emergency = models.ForeignKey(EmergencyRequest, on_delete=models.CASCADE, related_name="responses")
    donor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="emergency_responses")
    message = models.CharField("Message", max_length=200, blank=True)
    availability = models.CharField("Availability", max_length=12, choices=Availability.choices)
    current_city = models.CharField("Current city", max_length=80, blank=True)
    estimated_arrival = models.CharField("Estimated arrival", max_length=60, blank=True)
    contact_method = models.CharField("Contact method", max_length=20, choices=Contact.choices,
                                      default=Contact.PHONE)
    status = models.CharField("Status", max_length=10, choices=Status.choices, default=Status.PENDING)
    responded_at = models.DateTimeField("Responded at", default=timezone.now)
    confirmed_at = models.DateTimeField("Confirmed at", null=True, blank=True)

    class Meta:
        ordering = ["responded_at"]
        constraints = [
            models.UniqueConstraint(fields=["emergency", "donor"], name="one_emergency_response_per_donor"),
        ]


class ConfirmedDonor(models.Model):
    class Status(models.TextChoices):
        SCHEDULED = "scheduled", "Scheduled"
        IN_PROGRESS = "in-progress", "In progress"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    emergency = models.ForeignKey(EmergencyRequest, on_delete=models.CASCADE, related_name="confirmed_donors")
    donor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+")
    confirmed_at = models.DateTimeField("Confirmed at", default=timezone.now)
    expected_arrival = models.DateTimeField("Expected arrival")
    actual_arrival = models.DateTimeField("Actual arrival", null=True, blank=True)
    donation_status = models.CharField("Donation status", max_length=12, choices=Status.choices,
                                       default=Status.SCHEDULED)
    units_contributed = models.PositiveSmallIntegerField(
        "Units contributed", default=1, validators=[MinValueValidator(1), MaxValueValidator(5)],
    )
    notes = models.CharField("Notes", max_length=300, blank=True)

    class Meta:
        ordering = ["confirmed_at"]
        constraints = [
            models.UniqueConstraint(fields=["emergency", "donor"], name="one_confirmation_per_donor"),
        ]


class BroadcastRecipient(models.Model):
    emergency = models.ForeignKey(EmergencyRequest, on_delete=models.CASCADE, related_name="broadcast_recipients")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+")
    method = models.CharField("Method", max_length=20, blank=True)
    sent_at = models.DateTimeField("Sent at", default=timezone.now)
    delivered = models.BooleanField("Delivered", default=False)
    error = models.CharField("Error", max_length=200, blank=True)

    class Meta:
        ordering = ["sent_at", "id"]


class TimelineEvent(models.Model):
    emergency = models.ForeignKey(EmergencyRequest, on_delete=models.CASCADE, related_name="timeline")
    event = models.CharField("Event", max_length=50)
    description = models.CharField("Description", max_length=300, blank=True)
    actor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL,
                              null=True, blank=True, related_name="+")
    metadata = models.JSONField("Metadata", default=dict, blank=True)
    timestamp = models.DateTimeField("Timestamp", default=timezone.now)

    class Meta:
        ordering = ["timestamp", "id"]

    def __str__(self):
        return f"{self.timestamp:%Y-%m-%d %H:%M} {self.event}"

    def save(self, *args, **kwargs):
        # append-only audit trail
        if self.pk is not None:
            raise StateError("Timeline events cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise StateError("Timeline events cannot be deleted")


# -------------------- Donations --------------------
class Donation(models.Model):
    class Status(models.TextChoices):
        SCHEDULED = "scheduled", "Scheduled"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"
        EXPIRED = "expired", "Expired"

    class TestResult(models.TextChoices):
        PENDING = "pending", "Pending"
        NEGATIVE = "negative", "Negative"
        POSITIVE = "positive", "Positive"

    donor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="donations")
    blood_type = models.CharField("Blood type", max_length=3, choices=BLOOD_TYPES)
    amount_ml = models.PositiveIntegerField(
        "Amount (ml)", default=450, validators=[MinValueValidator(250), MaxValueValidator(500)],
    )
    appointment_at = models.DateTimeField("Appointment")
    donation_date = models.DateTimeField("Donation date", null=True, blank=True)
    hospital = models.CharField("Hospital", max_length=120)
    hospital_address = models.CharField("Hospital address", max_length=200, blank=True)
    city = models.CharField("City", max_length=80)
    status = models.CharField("Status", max_length=10, choices=Status.choices,
                              default=Status.SCHEDULED, db_index=True)

    # pre-screening vitals
    hemoglobin = models.DecimalField("Hemoglobin", max_digits=4, decimal_places=1, null=True, blank=True,
                                     validators=[MinValueValidator(12.5), MaxValueValidator(20)])
    systolic = models.PositiveSmallIntegerField("Systolic", null=True, blank=True)
    diastolic = models.PositiveSmallIntegerField("Diastolic", null=True, blank=True)
    pulse = models.PositiveSmallIntegerField("Pulse", null=True, blank=True,
                                             validators=[MinValueValidator(50), MaxValueValidator(100)])
    temperature = models.DecimalField("Temperature", max_digits=3, decimal_places=1, null=True, blank=True,
                                      validators=[MinValueValidator(36), MaxValueValidator(37.5)])
    screening_weight_kg = models.PositiveIntegerField("Weight (kg)", null=True, blank=True,
                                                      validators=[MinValueValidator(50)])
    screening_passed = models.BooleanField("Screening passed", default=False)
    screening_notes = models.CharField("Screening notes", max_length=300, blank=True)

    # lab results
    hiv_test = models.CharField("HIV", max_length=10, choices=TestResult.choices, default=TestResult.PENDING)
    hepatitis_b_test = models.CharField("Hepatitis B", max_length=10, choices=TestResult.choices,
                                        default=TestResult.PENDING)
    hepatitis_c_test = models.CharField("Hepatitis C", max_length=10, choices=TestResult.choices,
                                        default=TestResult.PENDING)
    syphilis_test = models.CharField("Syphilis", max_length=10, choices=TestResult.choices,
                                     default=TestResult.PENDING)
    malaria_test = models.CharField("Malaria", max_length=10, choices=TestResult.choices,
                                    default=TestResult.PENDING)
    tested_at = models.DateTimeField("Tested at", null=True, blank=True)
    tested_by = models.CharField("Tested by", max_length=120, blank=True)
    tests_approved = models.BooleanField("Tests approved", default=False)

    # issued once, at completion
    certificate_number = models.CharField("Certificate", max_length=16, unique=True, null=True, blank=True)
    blood_bag_id = models.CharField("Blood bag ID", max_length=20, unique=True, null=True, blank=True)

    blood_request = models.ForeignKey(BloodRequest, on_delete=models.SET_NULL, null=True, blank=True,
                                      related_name="donations")
    emergency_request = models.ForeignKey(EmergencyRequest, on_delete=models.SET_NULL, null=True, blank=True,
                                          related_name="donations")
    notes = models.CharField("Notes", max_length=500, blank=True)
    created_at = models.DateTimeField("Created at", auto_now_add=True)

    class Meta:
        ordering = ["-appointment_at"]
        indexes = [
            models.Index(fields=["donor", "-donation_date"]),
            models.Index(fields=["blood_type", "status"]),
        ]

    def __str__(self):
        return f"{self.blood_type} {self.appointment_at:%Y-%m-%d %H:%M} - {self.donor.get_username()}"

    @property
    def is_emergency(self):
        return self.emergency_request_id is not None

    @property
    def certificate_issued(self):
        return bool(self.certificate_number)

    @property
    def expiry_date(self):
        if not self.donation_date:
            return None
        return ledger.shelf_life_expiry(self.donation_date)
