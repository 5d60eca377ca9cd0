"""Date helpers shared by forms, importers, filters and reports.

Two textual formats are accepted everywhere a date is typed by a person:
ISO ``YYYY-MM-DD`` and the Brazilian ``DD/MM/YYYY``.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta

SPREADSHEET_EPOCH = date(1899, 12, 30)


def today() -> date:
    return date.today()


def parse_date(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    raw = str(value).strip()
    if not raw:
        return None

    if '/' in raw:
        parts = [part.strip() for part in raw.split('/')]
        if len(parts) != 3 or not all(part.isdigit() for part in parts):
            return None
        day, month, year = (int(part) for part in parts)
        try:
            return date(year, month, day)
        except ValueError:
            return None

    # Accept full timestamps such as 2024-01-05T10:00:00Z by keeping the date part.
    candidate = raw.split('T', 1)[0].split(' ', 1)[0]
    try:
        return date.fromisoformat(candidate)
    except ValueError:
        return None


def spreadsheet_serial_to_date(serial: float) -> date:
    return SPREADSHEET_EPOCH + timedelta(days=int(serial))


def to_iso(value: date | None) -> str:
    return value.isoformat() if value else ''


def format_date_br(value: date | None) -> str:
    return value.strftime('%d/%m/%Y') if value else ''


def days_between(start: date, end: date) -> int:
    return abs((end - start).days)


def elapsed_days(start: date, reference: date) -> int:
    return (reference - start).days
