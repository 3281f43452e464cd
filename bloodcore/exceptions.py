# bloodcore/exceptions.py
from django.core.exceptions import (
    ObjectDoesNotExist,
    PermissionDenied,
    ValidationError as DjangoValidationError,
)


class BloodCoreError(Exception):
    """Base class for every business-rule rejection raised by bloodcore."""


class ValidationError(DjangoValidationError, BloodCoreError):
    """Malformed input: bad enum, out-of-range count, non-future date."""


class InsufficientStock(BloodCoreError):
    def __init__(self, blood_type, requested, available):
        self.blood_type = blood_type
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {blood_type}. "
            f"Available: {available} units, Requested: {requested} units"
        )


class ConflictError(BloodCoreError):
    """The operation clashes with existing state (duplicate response, already accepted...)."""


class NotRequesterError(ConflictError, PermissionDenied):
    """Only the original requester may perform this operation."""


class NotFoundError(BloodCoreError, ObjectDoesNotExist):
    """Unknown blood type, request, emergency or donor-within-request."""


class StateError(BloodCoreError):
    """The aggregate is in a state that does not allow the operation."""
