"""Time helpers shared by the ingestion, analytics and suggestion code."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from config import settings


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the storage convention for all columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def reporting_timezone() -> ZoneInfo:
    return ZoneInfo(settings.ANALYTICS_TIMEZONE)


def to_reporting(value: datetime, tz: ZoneInfo = None) -> datetime:
    """Convert a stored naive UTC timestamp into the reporting timezone."""
    tz = tz or reporting_timezone()
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def reporting_date(value: datetime, tz: ZoneInfo = None) -> date:
    return to_reporting(value, tz).date()
