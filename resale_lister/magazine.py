"""Magazine barcode add-on and cover-date parsing.

Periodicals carry a 2- or 5-digit supplemental barcode next to the EAN-13.
EAN-2 usually encodes the issue (or week) number; EAN-5 commonly encodes a
cover price whose first four digits are cents and whose last digit is a
checksum. When no add-on is present the cover month and year are inferred
from free text instead.
"""
from __future__ import annotations

import re
from typing import Optional, Tuple

from .constants import MONTH_NAMES, YEAR_RE
from .models import MagazineAddonInference

_EAN2_RE = re.compile(r"^\d{2}$")
_EAN5_RE = re.compile(r"^\d{5}$")
# Cover spellings beyond the 3-letter abbreviation
_EXTRA_ABBREVIATIONS = {"September": ("Sept",)}


def _month_pattern(name: str) -> re.Pattern:
    # Whole words only, so "summary" does not read as March
    spellings = (name, name[:3]) + _EXTRA_ABBREVIATIONS.get(name, ())
    return re.compile(rf"\b(?:{'|'.join(spellings)})\b", re.IGNORECASE)


_MONTH_PATTERNS = [(name, _month_pattern(name)) for name in MONTH_NAMES]


def parse_addon(addon: Optional[str]) -> MagazineAddonInference:
    result = MagazineAddonInference()
    if not addon:
        return result
    addon = str(addon)
    if _EAN2_RE.match(addon):
        result.inferred_issue = addon
    elif _EAN5_RE.match(addon):
        cents = int(addon[:4])
        if cents > 0:
            result.suggested_price = cents / 100
    return result


def parse_month_year_from_text(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(month, year)`` found anywhere in ``text``; either may be None."""
    if not text:
        return None, None
    month = None
    for name, pattern in _MONTH_PATTERNS:
        if pattern.search(text):
            month = name
            break
    year_match = YEAR_RE.search(text)
    return month, (year_match.group(0) if year_match else None)


def infer_magazine_details(
    addon: Optional[str],
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> MagazineAddonInference:
    """Combine add-on decoding with cover-date text inference.

    Title text is consulted before description text, and only for fields the
    add-on did not provide.
    """
    inference = parse_addon(addon)
    title_month, title_year = parse_month_year_from_text(title)
    desc_month, desc_year = parse_month_year_from_text(description)
    inference.inferred_month = inference.inferred_month or title_month or desc_month
    inference.inferred_year = inference.inferred_year or title_year or desc_year
    return inference


def normalize_month_name(value: Optional[str]) -> Optional[str]:
    """Map 'jan', 'January', '1' or '01' to 'January'."""
    if value is None:
        return None
    token = str(value).strip().rstrip(".").lower()
    if not token:
        return None
    if token.isdigit():
        idx = int(token)
        return MONTH_NAMES[idx - 1] if 1 <= idx <= 12 else None
    for name in MONTH_NAMES:
        if token == name.lower() or token == name[:3].lower() or (len(token) >= 3 and name.lower().startswith(token)):
            return name
    return None


def format_issue_date(value: Optional[str]) -> Optional[str]:
    """Render an issue date as 'January 2024' or '2024'.

    Accepts free text ('Jan 2024'), ISO-ish dates ('2024-01', '2024-01-15')
    and bare years. Returns the stripped input when nothing can be parsed.
    """
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None

    iso = re.match(r"^((?:19|20)\d{2})-(\d{1,2})(?:-\d{1,2})?$", text)
    if iso:
        month = normalize_month_name(iso.group(2))
        return f"{month} {iso.group(1)}" if month else iso.group(1)

    year_match = YEAR_RE.search(text)
    year = year_match.group(0) if year_match else None
    month = None
    for word in re.findall(r"[A-Za-z]+", text):
        month = normalize_month_name(word) if len(word) >= 3 else None
        if month:
            break
    if month and year:
        return f"{month} {year}"
    if year:
        return year
    if month:
        return month
    return text
