from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo


# Belém, Pará (UTC-3, no daylight saving time).
BUSINESS_TIMEZONE_NAME = "America/Belem"
BUSINESS_TIMEZONE = ZoneInfo(BUSINESS_TIMEZONE_NAME)


def now_in_business_tz() -> datetime:
    return datetime.now(BUSINESS_TIMEZONE)


def to_business_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("Naive datetimes cannot be converted to business time.")
    return value.astimezone(BUSINESS_TIMEZONE)


def format_business_datetime(value: datetime, fmt: str = "%d/%m/%Y %H:%M:%S") -> str:
    return to_business_time(value).strftime(fmt)


def get_timezone_info() -> dict[str, str]:
    now = now_in_business_tz()
    return {
        "timezone": BUSINESS_TIMEZONE_NAME,
        "utcOffset": "UTC-3",
        "currentDate": now.strftime("%Y-%m-%d"),
        "currentDateTime": format_business_datetime(now),
    }
