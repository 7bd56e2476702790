import datetime
from typing import Any, Optional, Union

from dateutil import parser as date_parser

TRUTHY_FLAGS = {'true', '1', 'yes', 'on'}
BYTE_UNITS = ['Bytes', 'KB', 'MB', 'GB', 'TB']


def utc_now() -> datetime.datetime:
    """
    Naive UTC timestamp, the representation every datetime column uses
    """
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def utc_today() -> datetime.date:
    return utc_now().date()


def to_naive_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(datetime.timezone.utc).replace(tzinfo=None)


def safe_datetime_parse(
    dt: Union[str, datetime.datetime, None],
) -> Optional[datetime.datetime]:
    """
    Ensures a datetime is returned with valid string or datetime
    and does not raise for None
    """
    if isinstance(dt, datetime.datetime):
        return dt

    if not dt:
        return None

    return date_parser.parse(dt)


def parse_utc_timestamp(value: Any) -> Optional[datetime.datetime]:
    """
    Lenient ISO-8601 parse into naive UTC. Anything unparseable is None.
    Strings without an offset are taken to be UTC already.
    """
    if not isinstance(value, (str, datetime.datetime)):
        return None
    try:
        parsed = safe_datetime_parse(value)
    except (ValueError, OverflowError):
        return None
    if parsed is None:
        return None
    return to_naive_utc(parsed)


def isoformat_utc(dt: Optional[datetime.datetime]) -> Optional[str]:
    """
    Naive UTC datetime to an ISO string with millisecond precision and Z suffix
    """
    if dt is None:
        return None
    return to_naive_utc(dt).isoformat(timespec='milliseconds') + 'Z'


def get_day_bounds_utc(for_date: datetime.date) -> tuple[datetime.datetime, datetime.datetime]:
    """
    Returns (start, end) of a UTC calendar day where start is inclusive and end is exclusive.
    """
    start = datetime.datetime(for_date.year, for_date.month, for_date.day)
    return start, start + datetime.timedelta(days=1)


def parse_bool_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_FLAGS


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def format_bytes(size: int | float, decimals: int = 2) -> str:
    """
    Human readable size with 1024 based units, e.g. 1536 -> '1.5 KB'
    """
    if not size or size <= 0:
        return '0 Bytes'

    index = 0
    value = float(size)
    while value >= 1024 and index < len(BYTE_UNITS) - 1:
        value /= 1024
        index += 1
    # Drop trailing zeros so 1.50 renders as 1.5
    text = f'{value:.{decimals}f}'.rstrip('0').rstrip('.')
    return f'{text} {BYTE_UNITS[index]}'
