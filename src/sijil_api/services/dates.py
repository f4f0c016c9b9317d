"""Arabic date formatting for documents and template values.

Hijri dates use the tabular (arithmetic) Islamic calendar, which can differ
from the official Umm al-Qura calendar by a day.
"""

from __future__ import annotations

from datetime import date, datetime


GREGORIAN_MONTHS_AR = (
    "يناير",
    "فبراير",
    "مارس",
    "أبريل",
    "مايو",
    "يونيو",
    "يوليو",
    "أغسطس",
    "سبتمبر",
    "أكتوبر",
    "نوفمبر",
    "ديسمبر",
)

HIJRI_MONTHS_AR = (
    "محرم",
    "صفر",
    "ربيع الأول",
    "ربيع الآخر",
    "جمادى الأولى",
    "جمادى الآخرة",
    "رجب",
    "شعبان",
    "رمضان",
    "شوال",
    "ذو القعدة",
    "ذو الحجة",
)

# Proleptic Gregorian ordinal 1 (0001-01-01) is Julian day 1721426.
_ORDINAL_TO_JDN = 1721425


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def format_date_arabic(value: date | datetime) -> str:
    day = _as_date(value)
    return f"{day.day} {GREGORIAN_MONTHS_AR[day.month - 1]} {day.year}"


def to_iso_date(value: date | datetime) -> str:
    return _as_date(value).isoformat()


def gregorian_to_hijri(value: date | datetime) -> tuple[int, int, int]:
    jdn = _as_date(value).toordinal() + _ORDINAL_TO_JDN
    days = jdn - 1948440 + 10632
    cycles = (days - 1) // 10631
    days = days - 10631 * cycles + 354
    years = ((10985 - days) // 5316) * ((50 * days) // 17719) + (days // 5670) * (
        (43 * days) // 15238
    )
    days = (
        days
        - ((30 - years) // 15) * ((17719 * years) // 50)
        - (years // 16) * ((15238 * years) // 43)
        + 29
    )
    month = (24 * days) // 709
    day = days - (709 * month) // 24
    year = 30 * cycles + years - 30
    return year, month, day


def format_hijri_arabic(value: date | datetime) -> str:
    year, month, day = gregorian_to_hijri(value)
    return f"{day} {HIJRI_MONTHS_AR[month - 1]} {year} هـ"


def parse_date_value(raw: str) -> datetime | None:
    """Parse ISO dates and datetimes; returns None for anything else."""
    text = raw.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
