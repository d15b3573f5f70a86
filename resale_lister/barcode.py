from __future__ import annotations

import re
from typing import Optional

from .constants import BOOK_PREFIXES, MAGAZINE_PREFIX
from .models import BarcodeClassification, BarcodeKind

_SEPARATORS_RE = re.compile(r"[\s-]")
_NON_CODE_RE = re.compile(r"[^0-9Xx]")


def clean_code(value: Optional[str]) -> str:
    """Strip separators and anything that is not a digit or ISBN check 'X'."""
    if not value:
        return ""
    stripped = _SEPARATORS_RE.sub("", str(value))
    return _NON_CODE_RE.sub("", stripped).upper()


def normalize(raw: Optional[str]) -> BarcodeClassification:
    """Classify a scanned barcode string.

    EAN-13 codes with a 2- or 5-digit supplemental add-on (15 or 18 digits in
    total) are split into the 13-digit code and the add-on. Input that matches
    no known shape is reported as UNKNOWN with whatever characters remain.
    """
    d = clean_code(raw)
    n = len(d)

    if n in (18, 15):
        if d.startswith(BOOK_PREFIXES):
            return BarcodeClassification(BarcodeKind.ISBN13, d[:13], d[13:])
        if d.startswith(MAGAZINE_PREFIX):
            return BarcodeClassification(BarcodeKind.EAN13_MAGAZINE, d[:13], d[13:])

    if n == 13 and d.startswith(BOOK_PREFIXES):
        return BarcodeClassification(BarcodeKind.ISBN13, d)
    if n == 13 and d.startswith(MAGAZINE_PREFIX):
        return BarcodeClassification(BarcodeKind.EAN13_MAGAZINE, d)
    if n == 10:
        return BarcodeClassification(BarcodeKind.ISBN10, d)
    if n == 12:
        return BarcodeClassification(BarcodeKind.UPCA, d)

    return BarcodeClassification(BarcodeKind.UNKNOWN, d)


def compute_isbn13_check_digit(prefix: str) -> str:
    if len(prefix) != 12 or not prefix.isdigit():
        raise ValueError(f"ISBN-13 prefix must be 12 digits, received '{prefix}'")
    total = 0
    for idx, digit in enumerate(prefix):
        factor = 3 if idx % 2 else 1
        total += factor * int(digit)
    return str((10 - (total % 10)) % 10)


def isbn10_to_isbn13(isbn10: str) -> str:
    core = isbn10[:9]
    if len(isbn10) != 10 or not core.isdigit():
        raise ValueError(f"Cannot convert malformed ISBN-10: {isbn10}")
    prefix = "978" + core
    return prefix + compute_isbn13_check_digit(prefix)


def validate_isbn13(isbn: str) -> bool:
    if len(isbn) != 13 or not isbn.isdigit():
        return False
    return isbn[-1] == compute_isbn13_check_digit(isbn[:12])


def lookup_code(classification: BarcodeClassification) -> str:
    """Return the code used for upstream lookups (ISBN-10 is promoted to ISBN-13)."""
    if classification.kind is BarcodeKind.ISBN10:
        try:
            return isbn10_to_isbn13(classification.code)
        except ValueError:
            return classification.code
    return classification.code
