# bloodcore/audit.py
from .models import AuditEvent


def _role_of(user):
    if user is None:
        return ""
    if getattr(user, "is_staff", False):
        return "ADMIN"
    profile = getattr(user, "profile", None)
    return profile.role if profile else ""


def log_event(user, action, role=None, **details):
    """
    Create AuditEvent.
    role – override role shown on the row (default: the user's profile role, ADMIN for staff).
    details – extra dict persisted.
    """
    return AuditEvent.objects.create(
        user=user,
        role=role if role is not None else _role_of(user),
        action=action,
        details=details,
    )
