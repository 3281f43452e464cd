# bloodcore/scoring.py
import math

URGENCY_PRIORITY = {"low": 1, "medium": 2, "high": 3, "critical": 4}
EMERGENCY_PRIORITY = 5
SEVERITY_WEIGHT = {"critical": 10, "severe": 7, "moderate": 4}


def priority_for_urgency(urgency: str) -> int:
    return URGENCY_PRIORITY[urgency]


def days_remaining(required_by, now) -> int:
    return math.ceil((required_by - now).total_seconds() / 86400)


def hours_remaining(deadline, now) -> int:
    return max(0, math.ceil((deadline - now).total_seconds() / 3600))


def urgency_score(urgency: str, required_by, now) -> int:
    """Equal urgencies rank by time pressure: the closer the deadline, the higher."""
    time_weight = max(0, 5 - days_remaining(required_by, now))
    return URGENCY_PRIORITY.get(urgency, 1) * 10 + time_weight


def emergency_urgency_level(severity: str, required_within_hours: int, units: int) -> float:
    time_weight = max(0, 10 - required_within_hours)
    units_weight = min(3, units / 2)
    return min(10, SEVERITY_WEIGHT[severity] + time_weight + units_weight)


def completion_percentage(received: int, required: int, cap=True) -> int:
    if not required:
        return 0
    pct = round(received / required * 100)
    return min(100, pct) if cap else pct
