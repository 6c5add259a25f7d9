import re
import unicodedata
from typing import NamedTuple, Optional

MAX_NAME_LENGTH = 100
FALLBACK_NAME = "Unnamed Payable"

TITLE_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")
_DATE_YEAR_PATTERNS = (
    (re.compile(r"/(\d{4})$"), False),  # DD/MM/YYYY
    (re.compile(r"/(\d{2})$"), True),   # DD/MM/YY
    (re.compile(r"^(\d{4})\b"), False),  # YYYY-MM-DD
)
_TTGRID_YEAR_RE = re.compile(r"^(\d{4})")
_EMPTY_BRACKETS_RE = re.compile(r"\(\s*\)|\[\s*\]|\{\s*\}")
_MULTI_SPACE_RE = re.compile(r"\s{2,}")
_COMBINING_MARKS_RE = re.compile(r"[\u0300-\u036f]")
_DISALLOWED_RE = re.compile(r"[^a-zA-Z0-9 .%!&)(\-,/:_@#'$?+\t]")


class PayableName(NamedTuple):
    name: str
    year: str


def _collapse(text: str) -> str:
    return _MULTI_SPACE_RE.sub(" ", text).strip()


def year_from_title(title: str) -> str:
    match = TITLE_YEAR_RE.search(title or "")
    return match.group(1) if match else ""


def year_from_date(date_text: Optional[str]) -> str:
    """Year of a DD/MM/YYYY, DD/MM/YY or YYYY-MM-DD string; '' when none is readable."""
    if not date_text or not isinstance(date_text, str):
        return ""
    date_text = date_text.strip()
    for pattern, two_digit in _DATE_YEAR_PATTERNS:
        match = pattern.search(date_text)
        if not match:
            continue
        if two_digit:
            yy = int(match.group(1))
            return str(2000 + yy if yy < 50 else 1900 + yy)
        return match.group(1)
    return ""


def year_from_ttgrid(ttgrid: str) -> str:
    """'2025TT' -> '2025'."""
    match = _TTGRID_YEAR_RE.match((ttgrid or "").strip())
    return match.group(1) if match else ""


def _strip_year(text: str, year: str) -> str:
    # years inside a slash date such as 26/06/2025 stay put
    pattern = re.compile(r"(?<!\d/)\b" + re.escape(year) + r"\b(?!/\d)")
    return _collapse(pattern.sub("", text))


def _strip_empty_brackets(text: str) -> str:
    previous = None
    while text != previous:
        previous = text
        text = _collapse(_EMPTY_BRACKETS_RE.sub("", text))
    return text


def _strip_accents(text: str) -> str:
    return _COMBINING_MARKS_RE.sub("", unicodedata.normalize("NFD", text))


def normalize_payable_name(title: str, date_text: Optional[str] = "", fallback_year: str = "") -> PayableName:
    """Build the import label for a charge: year prefix, sanitized, 1-100 characters.

    The year is looked up in the title, then the date, then ``fallback_year``
    (the year used for the previous row). The year actually used is returned
    so the caller can carry it to the next row.
    """
    name = title or ""
    year = year_from_title(name) or year_from_date(date_text) or (fallback_year or "")

    if year:
        name = f"{year} {_strip_year(name, year)}".strip()

    name = _strip_empty_brackets(name)
    name = _strip_accents(name)
    name = _collapse(_DISALLOWED_RE.sub("", name))

    if len(name) > MAX_NAME_LENGTH:
        name = name[:MAX_NAME_LENGTH].strip()
    if not name:
        name = FALLBACK_NAME

    return PayableName(name, year)
