"""Quiet-hours arithmetic.

Windows are local wall-clock times in the instance's timezone. A window whose
start is after its end wraps past midnight (e.g. 22:00-08:00). Both ends are
inclusive at minute precision.
"""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from dateutil import tz
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

RESUME_GRACE = timedelta(minutes=5)


def resolve_zone(name: Optional[str]):
    zone = tz.gettz(name or "UTC")
    if zone is None:
        logger.warning("Unknown timezone %r; quiet hours evaluated in UTC", name)
        return tz.UTC
    return zone


def in_quiet_hours(current: time, start: time, end: time) -> bool:
    current = current.replace(second=0, microsecond=0)
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def quiet_hours_resume_at(
    now: datetime,
    start: Optional[time],
    end: Optional[time],
    timezone_name: Optional[str] = "UTC",
) -> Optional[datetime]:
    """Return when sending may resume if `now` falls inside the window, else None.

    The resume instant is end + 5 minutes on the same local day, or on the
    next day if that instant has already passed. Returned in UTC.
    """
    if start is None or end is None:
        return None
    zone = resolve_zone(timezone_name)
    local_now = now.astimezone(zone)
    if not in_quiet_hours(local_now.time(), start, end):
        return None

    resume = datetime.combine(local_now.date(), end, tzinfo=zone) + RESUME_GRACE
    if resume <= local_now:
        next_day = local_now.date() + relativedelta(days=1)
        resume = datetime.combine(next_day, end, tzinfo=zone) + RESUME_GRACE
    return resume.astimezone(timezone.utc)
