import calendar
from datetime import date, datetime, timedelta
from miturn.models.circle import Circle
from miturn.models.enums import Frequency

PERIOD_DAYS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

def clamp_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))

def add_months(current: date, months: int, day_of_month: int | None = None) -> date:
    """
    Moves ``current`` forward by whole months, keeping ``day_of_month``
    (or the current day) and clamping to the end of shorter months.
    """
    total_months = current.year * 12 + current.month - 1 + months
    year, month = divmod(total_months, 12)
    return clamp_day(year, month + 1, day_of_month or current.day)

def add_periods(start: datetime, frequency: Frequency, count: int) -> datetime:
    if frequency == Frequency.MONTHLY:
        moved = add_months(start.date(), count, start.day)
        return datetime.combine(moved, start.time())
    return start + timedelta(days=PERIOD_DAYS[frequency] * count)

def calculate_current_cycle(circle: Circle, now: datetime) -> int:
    """
    Calculate the calendar cycle number for a circle based on its start date and frequency.
    Cycle starts at 1; 0 means the circle has not started.
    """
    if not circle.cycle_start_date:
        return 0

    start_date = circle.cycle_start_date
    if now < start_date:
        return 1

    if circle.frequency == Frequency.MONTHLY:
        months_passed = (now.year - start_date.year) * 12 + (now.month - start_date.month)
        # Cycle changes on the same day next month
        if now.day < start_date.day:
            months_passed -= 1
        cycle_number = months_passed + 1
    else:
        days_passed = (now - start_date).days
        cycle_number = (days_passed // PERIOD_DAYS[circle.frequency]) + 1

    return max(1, cycle_number)

def cycle_due_date(circle: Circle, cycle_number: int) -> datetime:
    """
    Moment by which every contribution for ``cycle_number`` is expected,
    which is also when that cycle's payout becomes due.
    """
    if not circle.cycle_start_date:
        raise ValueError("Circle has not started")
    return add_periods(circle.cycle_start_date, circle.frequency, cycle_number)

def to_sunday_based_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7

def next_occurrence(
    frequency: Frequency,
    on_or_after: date,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
) -> date:
    """
    First date on or after ``on_or_after`` that matches the cadence anchor.
    """
    if frequency == Frequency.MONTHLY:
        candidate = clamp_day(on_or_after.year, on_or_after.month, day_of_month)
        if candidate < on_or_after:
            candidate = add_months(candidate, 1, day_of_month)
        return candidate

    days_ahead = (day_of_week - to_sunday_based_weekday(on_or_after)) % 7
    return on_or_after + timedelta(days=days_ahead)

def following_occurrence(
    frequency: Frequency,
    current: date,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
) -> date:
    """
    The occurrence after ``current`` for an entry that has just run.
    """
    if frequency == Frequency.MONTHLY:
        return add_months(current, 1, day_of_month)
    return current + timedelta(days=PERIOD_DAYS[frequency])
