"""Canonical forms for names, dates, ID numbers and addresses.

Everything here is pure and never raises on bad input: values that cannot be
interpreted normalize to an empty string (text) or ``None`` (dates).
"""

import re
import unicodedata
from datetime import date, datetime
from typing import Any, Optional

from dateutil.parser import isoparse

ADDRESS_PARTS = ("street", "ward", "district", "province")

_DMY_RE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})$")
# full calendar date, optionally followed by a time part
_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T ].+)?$")
_WS_RE = re.compile(r"\s+")


def is_empty(value: Any) -> bool:
    """None, or a string that is blank after trimming."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def remove_diacritics(text: str) -> str:
    """'Nguyễn Văn Đức' -> 'Nguyen Van Duc'"""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    stripped = stripped.replace("đ", "d").replace("Đ", "D")
    return unicodedata.normalize("NFC", stripped)


def normalize_name(value: Any) -> str:
    if is_empty(value):
        return ""
    return collapse_whitespace(remove_diacritics(str(value).casefold()))


def normalize_id_number(value: Any) -> str:
    if is_empty(value):
        return ""
    return re.sub(r"\s+", "", str(value)).upper()


def to_date(value: Any) -> Optional[date]:
    """Parse ``dd/mm/yyyy``, ISO dates/datetimes, or date objects.

    Partial dates (``1998``, ``1998-04``) are not dates of birth and give ``None``.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    match = _DMY_RE.match(text)
    try:
        if match:
            day, month, year = (int(part) for part in match.groups())
            return date(year, month, day)
        if _ISO_RE.match(text):
            return isoparse(text).date()
        return None
    except (ValueError, OverflowError):
        return None


def normalize_dob(value: Any) -> Optional[str]:
    parsed = to_date(value)
    return parsed.isoformat() if parsed else None


def normalize_address(value: Any) -> str:
    """Flatten a stored address into one string.

    History lists resolve to their most recent (last) entry, objects join
    their administrative parts with ", ", strings pass through unchanged.
    """
    if isinstance(value, (list, tuple)):
        if not value:
            return ""
        return normalize_address(value[-1])
    if isinstance(value, dict):
        parts = []
        for key in ADDRESS_PARTS:
            part = value.get(key)
            if not is_empty(part):
                parts.append(str(part).strip())
        return ", ".join(parts)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def fold_text(value: str) -> str:
    """Case-insensitive comparison key for free text."""
    return collapse_whitespace(value or "").casefold()
