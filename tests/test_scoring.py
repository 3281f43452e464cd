from datetime import timedelta

import pytest

from bloodcore import scoring


@pytest.mark.parametrize("urgency, priority", [("low", 1), ("medium", 2), ("high", 3), ("critical", 4)])
def test_priority_for_urgency(urgency, priority):
    assert scoring.priority_for_urgency(urgency) == priority


def test_urgency_score_ranks_by_time_pressure(now):
    soon = scoring.urgency_score("high", now + timedelta(days=1), now)
    later = scoring.urgency_score("high", now + timedelta(days=4), now)
    far = scoring.urgency_score("high", now + timedelta(days=30), now)
    assert soon == 34
    assert later == 31
    assert far == 30
    assert scoring.urgency_score("critical", now + timedelta(days=30), now) > soon


def test_days_remaining_rounds_up(now):
    assert scoring.days_remaining(now + timedelta(hours=25), now) == 2


def test_emergency_urgency_level():
    assert scoring.emergency_urgency_level("moderate", 6, 3) == 9.5
    assert scoring.emergency_urgency_level("critical", 2, 10) == 10
    assert scoring.emergency_urgency_level("severe", 48, 1) == 7.5


def test_hours_remaining_never_negative(now):
    assert scoring.hours_remaining(now - timedelta(hours=3), now) == 0
    assert scoring.hours_remaining(now + timedelta(minutes=90), now) == 2


def test_completion_percentage():
    assert scoring.completion_percentage(1, 3) == 33
    assert scoring.completion_percentage(5, 2) == 100
    assert scoring.completion_percentage(5, 2, cap=False) == 250
    assert scoring.completion_percentage(1, 0) == 0
