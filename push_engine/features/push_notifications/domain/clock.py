"""
Time policy for the engine.

Every "today", every hour-of-day check and every day count uses one fixed
service offset, never the host's local zone and never a per-user zone.
"""

from datetime import UTC, date, datetime, timedelta, timezone


def service_timezone(offset_hours: int) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def service_now(offset_hours: int, now: datetime | None = None) -> datetime:
    """Current (or given) instant expressed in the service offset."""
    moment = now or datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(service_timezone(offset_hours))


def days_between(start: date, end: date) -> int:
    """Calendar-day difference end - start."""
    return (end - start).days


def is_within_send_window(local_now: datetime, start_hour: int, end_hour: int) -> bool:
    """
    Whether the local hour falls inside [start_hour, end_hour).

    end_hour may be 24 to mean "until midnight". A window whose end is
    before its start wraps past midnight.
    """
    hour = local_now.hour
    if start_hour <= end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour
