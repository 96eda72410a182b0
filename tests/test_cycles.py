from datetime import date, datetime

from miturn.models.circle import Circle
from miturn.models.enums import Frequency
from miturn.utils.cycles import (
    add_months,
    calculate_current_cycle,
    cycle_due_date,
    following_occurrence,
    next_occurrence,
    to_sunday_based_weekday,
)

def make_circle(frequency, start):
    return Circle(name="c", contribution_amount=100, frequency=frequency, cycle_start_date=start, invite_code="x", created_by=None)

def test_calculate_current_cycle_weekly():
    circle = make_circle(Frequency.WEEKLY, datetime(2026, 1, 5))
    assert calculate_current_cycle(circle, datetime(2026, 1, 1)) == 1
    assert calculate_current_cycle(circle, datetime(2026, 1, 11, 23)) == 1
    assert calculate_current_cycle(circle, datetime(2026, 1, 12)) == 2
    assert calculate_current_cycle(circle, datetime(2026, 2, 2)) == 5

def test_calculate_current_cycle_monthly():
    circle = make_circle(Frequency.MONTHLY, datetime(2026, 1, 15))
    assert calculate_current_cycle(circle, datetime(2026, 2, 14)) == 1
    assert calculate_current_cycle(circle, datetime(2026, 2, 15)) == 2
    assert calculate_current_cycle(circle, datetime(2027, 1, 20)) == 13

def test_calculate_current_cycle_not_started():
    circle = make_circle(Frequency.WEEKLY, None)
    assert calculate_current_cycle(circle, datetime(2026, 1, 1)) == 0

def test_cycle_due_date():
    weekly = make_circle(Frequency.BIWEEKLY, datetime(2026, 1, 5, 9))
    assert cycle_due_date(weekly, 1) == datetime(2026, 1, 19, 9)
    assert cycle_due_date(weekly, 2) == datetime(2026, 2, 2, 9)

    monthly = make_circle(Frequency.MONTHLY, datetime(2026, 1, 31))
    assert cycle_due_date(monthly, 1) == datetime(2026, 2, 28)
    assert cycle_due_date(monthly, 2) == datetime(2026, 3, 31)

def test_add_months_clamps_to_month_end():
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)
    assert add_months(date(2026, 11, 30), 2) == date(2027, 1, 30)

def test_sunday_based_weekday():
    assert to_sunday_based_weekday(date(2026, 1, 4)) == 0  # Sunday
    assert to_sunday_based_weekday(date(2026, 1, 5)) == 1  # Monday
    assert to_sunday_based_weekday(date(2026, 1, 10)) == 6  # Saturday

def test_next_occurrence_weekly():
    # Wednesday -> the following Monday
    assert next_occurrence(Frequency.WEEKLY, date(2026, 1, 7), day_of_week=1) == date(2026, 1, 12)
    # same day counts
    assert next_occurrence(Frequency.WEEKLY, date(2026, 1, 12), day_of_week=1) == date(2026, 1, 12)

def test_next_occurrence_monthly():
    assert next_occurrence(Frequency.MONTHLY, date(2026, 1, 10), day_of_month=15) == date(2026, 1, 15)
    assert next_occurrence(Frequency.MONTHLY, date(2026, 1, 20), day_of_month=15) == date(2026, 2, 15)
    assert next_occurrence(Frequency.MONTHLY, date(2026, 2, 1), day_of_month=31) == date(2026, 2, 28)

def test_following_occurrence():
    assert following_occurrence(Frequency.WEEKLY, date(2026, 1, 12), day_of_week=1) == date(2026, 1, 19)
    assert following_occurrence(Frequency.BIWEEKLY, date(2026, 1, 12), day_of_week=1) == date(2026, 1, 26)
    # the anchor day comes back after a short month
    assert following_occurrence(Frequency.MONTHLY, date(2026, 2, 28), day_of_month=31) == date(2026, 3, 31)
