from datetime import datetime, timedelta, timezone

import pytest

from complaint_portal.sla import check_sla_breach, get_sla_hours, hours_between, sla_deadline

T0 = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("priority, limit", [("high", 24), ("medium", 48), ("low", 72)])
def test_limits_by_priority(priority, limit):
    assert get_sla_hours(priority) == limit


@pytest.mark.parametrize("priority", ["urgent", "", None, "HIGH"])
def test_unknown_priority_uses_low_limit(priority):
    assert get_sla_hours(priority) == 72


def test_hours_are_floored():
    assert hours_between(T0, T0 + timedelta(hours=1, minutes=59, seconds=59, milliseconds=999)) == 1
    assert hours_between(T0, T0 + timedelta(minutes=59)) == 0


def test_naive_timestamps_are_treated_as_utc():
    naive = T0.replace(tzinfo=None)
    assert hours_between(naive, T0 + timedelta(hours=3)) == 3


def test_breach_is_strictly_after_the_limit():
    at_limit = check_sla_breach(T0, "high", T0 + timedelta(hours=24, minutes=59))
    assert at_limit.hours_elapsed == 24
    assert not at_limit.breached
    assert at_limit.hours_overdue == 0

    past = check_sla_breach(T0, "high", T0 + timedelta(hours=25))
    assert past.breached
    assert past.hours_overdue == 1
    assert past.sla_limit == 24


def test_within_sla():
    check = check_sla_breach(T0, "low", T0 + timedelta(hours=23))
    assert not check.breached
    assert check.hours_elapsed == 23
    assert check.hours_overdue == 0


def test_deadline():
    assert sla_deadline(T0, "medium") == T0 + timedelta(hours=48)
    assert sla_deadline(T0.replace(tzinfo=None), "bogus") == T0 + timedelta(hours=72)
