"""时间与日期工具.

数据库中统一保存不带时区的 UTC 时间。
"""

from datetime import UTC, date, datetime, time, timedelta


def utcnow() -> datetime:
    """当前 UTC 时间（naive）."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_timestamp(value: datetime) -> int:
    """datetime 转毫秒时间戳."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    delta = value - datetime(1970, 1, 1, tzinfo=UTC)
    return delta // timedelta(milliseconds=1)


def from_timestamp(ms: int) -> datetime:
    """毫秒时间戳转 datetime（naive UTC）."""
    return datetime(1970, 1, 1) + timedelta(milliseconds=ms)


def parse_date(value: str) -> date:
    """解析 YYYY-MM-DD 日期字符串."""
    return date.fromisoformat(value)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """
    计算某天的 UTC 边界.

    Returns:
        (00:00:00.000, 23:59:59.999)
    """
    start = datetime.combine(day, time.min)
    end = datetime.combine(day, time(23, 59, 59, 999000))
    return start, end


def truncate_to_day(value: date | datetime) -> datetime:
    """截断到当天零点."""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def iso_week_key(day: date) -> str:
    """ISO 周标识，如 2025-W23."""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def monday_of(day: date) -> date:
    """所在周的周一."""
    return day - timedelta(days=day.weekday())


def calculate_week_range(today: date) -> tuple[date, date]:
    """
    计算周报的日期范围.

    周日触发时以当天为结束日，否则以最近一个周日为结束日，起始为之前的周一。
    """
    days_since_sunday = (today.weekday() + 1) % 7
    week_end = today - timedelta(days=days_since_sunday)
    week_start = week_end - timedelta(days=6)
    return week_start, week_end


def format_display_date(day: date) -> str:
    """展示用日期，如 Sunday, June 01, 2025."""
    return day.strftime("%A, %B %d, %Y")


def format_short_date(day: date) -> str:
    """短日期，如 Jun 1, 2025."""
    return f"{day.strftime('%b')} {day.day}, {day.year}"
