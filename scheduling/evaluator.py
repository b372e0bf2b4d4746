"""
Due-time evaluation of schedule expressions.

Decides whether an expression matches a point in time after the
instant has been moved into the evaluation timezone.
"""

from datetime import datetime, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

from scheduling.expression import ScheduleExpression, ScheduleField

TimezoneLike = Union[str, tzinfo, None]


def resolve_timezone(timezone: TimezoneLike) -> Optional[tzinfo]:
    """Turn an IANA identifier into a tzinfo; tzinfo and None pass through."""
    if timezone is None or isinstance(timezone, tzinfo):
        return timezone
    return ZoneInfo(timezone)


def localize(instant: datetime, timezone: TimezoneLike = None) -> datetime:
    """
    Convert an instant into the evaluation timezone.

    Naive instants are taken to be in the process-local zone. Without a
    timezone the result is expressed in the process-local zone.
    """
    return instant.astimezone(resolve_timezone(timezone))


def day_of_week(instant: datetime) -> int:
    """Weekday number with 0=Sunday ... 6=Saturday."""
    return instant.isoweekday() % 7


def is_due(
    expression: ScheduleExpression,
    instant: datetime,
    timezone: TimezoneLike = None
) -> bool:
    """
    Check whether an expression matches an instant.

    Every field is tested independently. Day-of-month and day-of-week
    follow traditional cron: when both are restricted, matching either
    one is enough; when one is a wildcard only the other constrains.

    Args:
        expression: Expression to evaluate
        instant: Point in time to test
        timezone: IANA identifier or tzinfo (default: process-local)

    Returns:
        True if the expression matches the instant
    """
    local = localize(instant, timezone)

    def matches(field: ScheduleField, value: int) -> bool:
        return value in expression.values(field)

    if not (
        matches(ScheduleField.SECOND, local.second)
        and matches(ScheduleField.MINUTE, local.minute)
        and matches(ScheduleField.HOUR, local.hour)
        and matches(ScheduleField.MONTH, local.month)
    ):
        return False

    dom_any = expression.is_wildcard(ScheduleField.DAY_OF_MONTH)
    dow_any = expression.is_wildcard(ScheduleField.DAY_OF_WEEK)
    dom_match = matches(ScheduleField.DAY_OF_MONTH, local.day)
    dow_match = matches(ScheduleField.DAY_OF_WEEK, day_of_week(local))

    if dom_any or dow_any:
        return dom_match and dow_match
    return dom_match or dow_match
