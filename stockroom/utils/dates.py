from __future__ import annotations

import re
from datetime import date, datetime


_ISO_DATE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})\s*$")
_STORAGE_DATE = re.compile(r"^\s*(\d{2})-(\d{2})-(\d{4})\s*$")


def to_storage_date(value: object | None) -> str:
    """Return ``value`` in the MM-DD-YYYY storage format.

    ISO dates and :class:`date` objects are converted; any other non-empty
    string is kept as typed.
    """

    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%m-%d-%Y")

    text = str(value).strip()
    if not text:
        return ""
    match = _ISO_DATE.match(text)
    if match:
        year, month, day = match.groups()
        return f"{month}-{day}-{year}"
    return text


def to_iso_date(value: str | None) -> str:
    """Return a stored MM-DD-YYYY value as YYYY-MM-DD, or ``""`` if unknown."""

    if not value:
        return ""
    if _ISO_DATE.match(value):
        return value.strip()
    match = _STORAGE_DATE.match(value)
    if match:
        month, day, year = match.groups()
        return f"{year}-{month}-{day}"
    return ""
