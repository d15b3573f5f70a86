"""Shared constants and patterns used across the application."""
from __future__ import annotations

import re

# eBay hard limit on listing title length
MAX_TITLE_LENGTH = 80

# Suggested price used when no comparable listings survive filtering
DEFAULT_FALLBACK_PRICE = 7.99

# Item types assigned by the product resolver
ITEM_TYPE_BOOK = "book"
ITEM_TYPE_MAGAZINE = "magazine"
ITEM_TYPE_PRODUCT = "product"

BOOK_PREFIXES = ("978", "979")
MAGAZINE_PREFIX = "977"

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

# Words left lower-case by title-case normalisation (unless first)
MINOR_WORDS = frozenset(
    {"a", "an", "and", "as", "at", "but", "by", "for", "in", "nor", "of", "on", "or", "so", "the", "to", "up", "yet"}
)

# Comparable listings that bundle several items skew per-item pricing
LOT_TITLE_RE = re.compile(r"\blot\b|\bbundle\b|\bset of\b", re.IGNORECASE)

YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")

DEFAULT_HEADERS = {
    "User-Agent": "Resale-Lister/1.0",
    "Accept": "application/json",
}
REQUEST_TIMEOUT = 15
