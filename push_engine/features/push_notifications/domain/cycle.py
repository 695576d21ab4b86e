"""
Cycle and journey-day arithmetic.

Pure functions over calendar dates. Callers pass "today" already expressed
in the service offset (see clock.service_now).
"""

from datetime import date, timedelta

from .clock import days_between
from .models import CycleInfo, ReferenceDates

DEFAULT_CYCLE_LENGTH_DAYS = 28
DEFAULT_PERIOD_LENGTH_DAYS = 5

LUTEAL_PHASE_DAYS = 14
FERTILE_DAYS_BEFORE_OVULATION = 5
PMS_DAYS_BEFORE_PERIOD = 7

PREGNANCY_DURATION_DAYS = 280
POSTPARTUM_JOURNEY_DAYS = 1460


def compute_cycle_info(
    last_period_date: date,
    cycle_length_days: int | None,
    period_length_days: int | None,
    today: date,
) -> CycleInfo:
    """
    Position of `today` within the menstrual cycle that started on
    `last_period_date`, plus the distance to the upcoming cycle events.

    Missing (or zero) lengths fall back to 28 / 5 days. A last period date
    in the future is a caller error and is not guarded.
    """
    cycle_length = cycle_length_days or DEFAULT_CYCLE_LENGTH_DAYS
    period_length = period_length_days or DEFAULT_PERIOD_LENGTH_DAYS

    days_since_period = days_between(last_period_date, today)
    current_cycle_day = (days_since_period % cycle_length) + 1
    cycles_passed = days_since_period // cycle_length

    next_period_date = last_period_date + timedelta(days=(cycles_passed + 1) * cycle_length)
    days_until_period = days_between(today, next_period_date)

    ovulation_date = next_period_date - timedelta(days=LUTEAL_PHASE_DAYS)
    fertile_start = ovulation_date - timedelta(days=FERTILE_DAYS_BEFORE_OVULATION)

    return CycleInfo(
        current_cycle_day=current_cycle_day,
        days_until_period=days_until_period,
        days_until_ovulation=days_between(today, ovulation_date),
        days_until_fertile=days_between(today, fertile_start),
        days_until_pms=days_until_period - PMS_DAYS_BEFORE_PERIOD,
        is_period_day=current_cycle_day <= period_length,
        cycle_length_days=cycle_length,
        period_length_days=period_length,
    )


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def pregnancy_day(dates: ReferenceDates, today: date) -> int | None:
    """
    1-indexed pregnancy day, clamped to 1..280.

    The last period date is the reference when present; otherwise it is
    derived from the due date. None when neither is known.
    """
    if dates.last_period_date:
        reference = dates.last_period_date
    elif dates.due_date:
        reference = dates.due_date - timedelta(days=PREGNANCY_DURATION_DAYS)
    else:
        return None

    return _clamp(days_between(reference, today) + 1, 1, PREGNANCY_DURATION_DAYS)


def postpartum_day(dates: ReferenceDates, today: date) -> int | None:
    """1-indexed day of the baby's life, clamped to 1..1460."""
    if not dates.child_birth_date:
        return None
    return _clamp(days_between(dates.child_birth_date, today) + 1, 1, POSTPARTUM_JOURNEY_DAYS)
