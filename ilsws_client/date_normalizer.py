"""
Date normalization.

ILSWS wants dates as YYYY-MM-DD. Incoming data arrives in a handful of
textual formats; each supported format template maps to an exact regular
expression shape and the position of the year, month and day groups.

Example:
    normalize_date("03/15/2022", "MM/DD/YYYY")   # "2022-03-15"
    normalize_date("2022-02-30", "YYYY-MM-DD")   # None (not a real date)
    parse_any_date("20220315")                   # "2022-03-15"
"""

import re
from datetime import date
from typing import Optional

from .errors import InvalidDateFormat

# template -> compiled shape, matched against the whole text; groups are always
# named year/month/day
_TEMPLATE_PATTERNS = {
    "YYYY-MM-DD": re.compile(r"(?P<year>[0-9]{4})-(?P<month>[0-9]{2})-(?P<day>[0-9]{2})"),
    "YYYY/MM/DD": re.compile(r"(?P<year>[0-9]{4})/(?P<month>[0-9]{2})/(?P<day>[0-9]{2})"),
    "MM-DD-YYYY": re.compile(r"(?P<month>[0-9]{2})-(?P<day>[0-9]{2})-(?P<year>[0-9]{4})"),
    "MM/DD/YYYY": re.compile(r"(?P<month>[0-9]{2})/(?P<day>[0-9]{2})/(?P<year>[0-9]{4})"),
    "YYYYMMDD": re.compile(r"(?P<year>[0-9]{4})(?P<month>[0-9]{2})(?P<day>[0-9]{2})"),
    "YYYY-MM-DD HH:MM": re.compile(
        r"(?P<year>[0-9]{4})-(?P<month>[0-9]{2})-(?P<day>[0-9]{2}) [0-9]{2}:[0-9]{2}"
    ),
    "YYYY/MM/DD HH:MM": re.compile(
        r"(?P<year>[0-9]{4})/(?P<month>[0-9]{2})/(?P<day>[0-9]{2}) [0-9]{2}:[0-9]{2}"
    ),
}

SUPPORTED_TEMPLATES = tuple(_TEMPLATE_PATTERNS)

# Preference order used when the format of an incoming date is unknown
DATE_FORMATS = (
    "YYYYMMDD",
    "YYYY-MM-DD",
    "YYYY/MM/DD",
    "MM-DD-YYYY",
    "MM/DD/YYYY",
    "YYYY-MM-DD HH:MM",
    "YYYY/MM/DD HH:MM",
)


def normalize_date(text: str, template: str) -> Optional[str]:
    """
    Convert a date string in the given template to YYYY-MM-DD.

    Args:
        text: Incoming date or timestamp text
        template: One of SUPPORTED_TEMPLATES

    Returns:
        Canonical YYYY-MM-DD string, or None if the text does not match the
        template shape or is not a real calendar date. The time-of-day part of
        timestamp templates is accepted and dropped.
    """
    pattern = _TEMPLATE_PATTERNS.get(template)
    if pattern is None or not isinstance(text, str):
        return None

    match = pattern.fullmatch(text)
    if not match:
        return None

    try:
        parsed = date(int(match["year"]), int(match["month"]), int(match["day"]))
    except ValueError:
        return None

    return f"{parsed.year:04d}-{parsed.month:02d}-{parsed.day:02d}"


def parse_any_date(text, field: Optional[str] = None) -> str:
    """
    Normalize a date whose format is not known in advance.

    Tries DATE_FORMATS in order and returns the first success.

    Raises:
        InvalidDateFormat: If no supported format accepts the value
    """
    for template in DATE_FORMATS:
        result = normalize_date(text, template)
        if result:
            return result

    raise InvalidDateFormat(field, text)
