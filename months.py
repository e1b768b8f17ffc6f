from datetime import date, datetime
import re
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_NAMES = (
    "Janeiro",
    "Fevereiro",
    "Março",
    "Abril",
    "Maio",
    "Junho",
    "Julho",
    "Agosto",
    "Setembro",
    "Outubro",
    "Novembro",
    "Dezembro",
)

_MONTH_ID = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def generate_month_id(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def get_month_label(d: date) -> str:
    return f"{MONTH_NAMES[d.month - 1]} {d.year:04d}"


def parse_month_id(month_id: str) -> date:
    match = _MONTH_ID.match(month_id or "")
    if not match:
        raise ValueError(f"Invalid month id: {month_id!r}")
    return date(int(match.group(1)), int(match.group(2)), 1)


def label_for_month_id(month_id: str) -> str:
    return get_month_label(parse_month_id(month_id))


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def redate_to_month(source: date, month_id: str) -> date:
    # Day 31 imported into a 30-day month lands on the 30th.
    first = parse_month_id(month_id)
    day = min(source.day, days_in_month(first.year, first.month))
    return first.replace(day=day)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()
