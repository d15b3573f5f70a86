"""Deterministic eBay listing titles.

Titles are rebuilt from structured fields every time: parts are laid out in a
fixed order, repeated words are collapsed, the seller's preferred keywords are
appended while they fit, and the result is cut on a word boundary to eBay's
80-character limit.

Example:
    >>> build_title(ItemFields(title="TIME Magazine", issue_number="12", issue_date="January 2024"))
    'TIME Magazine Issue 12 January 2024'
"""
from __future__ import annotations

import re
from typing import List, Optional, Sequence

from .constants import ITEM_TYPE_BOOK, ITEM_TYPE_MAGAZINE, MAX_TITLE_LENGTH, MINOR_WORDS
from .magazine import format_issue_date
from .models import ItemFields, UserTitlePreferences

BOOK_PLACEHOLDER = "Untitled"
MAGAZINE_PLACEHOLDER = "Magazine"

DEDUPE_CONSECUTIVE = "consecutive"
DEDUPE_GLOBAL = "global"

_MAGAZINE_WORD_RE = re.compile(r"\bmagazine\b", re.IGNORECASE)
_WORD_STRIP = ".,;:!?\"'()[]"


def to_title_case(text: Optional[str]) -> Optional[str]:
    """Soften ALL-CAPS input ("THE LORD OF THE RINGS" -> "The Lord of the Rings").

    Mixed-case text and short acronyms (<= 3 chars) are returned unchanged.
    """
    if not text:
        return text
    if len(text) <= 3 or text != text.upper() or text == text.lower():
        return text
    words = text.lower().split(" ")
    out: List[str] = []
    for idx, word in enumerate(words):
        if idx > 0 and word in MINOR_WORDS:
            out.append(word)
        else:
            out.append(word[:1].upper() + word[1:])
    return " ".join(out)


def _clean(value: Optional[object]) -> str:
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _word_key(word: str) -> str:
    return word.strip(_WORD_STRIP).lower() or word.lower()


def remove_duplicate_words(text: str, policy: str = DEDUPE_CONSECUTIVE) -> str:
    """Collapse repeated words, comparing case-insensitively.

    ``consecutive`` drops a word only when it repeats the word right before
    it; ``global`` drops any word already seen earlier in the title.
    """
    words = text.split()
    kept: List[str] = []
    seen = set()
    for word in words:
        key = _word_key(word)
        if policy == DEDUPE_GLOBAL:
            if key in seen:
                continue
            seen.add(key)
        elif kept and _word_key(kept[-1]) == key:
            continue
        kept.append(word)
    return " ".join(kept)


def truncate_to_limit(text: str, limit: int = MAX_TITLE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    out = ""
    for word in text.split():
        candidate = f"{out} {word}" if out else word
        if len(candidate) > limit:
            break
        out = candidate
    # A single word longer than the limit still has to be cut
    return out or text[:limit].rstrip()


def append_keywords(text: str, keywords: Sequence[str], limit: int = MAX_TITLE_LENGTH) -> str:
    """Append keywords one at a time while the title stays within ``limit``.

    Stops at the first keyword that does not fit.
    """
    for keyword in keywords:
        keyword = _clean(keyword)
        if not keyword:
            continue
        candidate = f"{text} {keyword}" if text else keyword
        if len(candidate) > limit:
            break
        text = candidate
    return text


def detect_item_type(item: ItemFields) -> str:
    if item.item_type in (ITEM_TYPE_BOOK, ITEM_TYPE_MAGAZINE):
        return item.item_type
    if item.issue_number or item.issue_date or item.issue_title:
        return ITEM_TYPE_MAGAZINE
    for text in (item.category, item.title):
        if text and _MAGAZINE_WORD_RE.search(text):
            return ITEM_TYPE_MAGAZINE
    return ITEM_TYPE_BOOK


def _format_issue_number(value: Optional[object], style: str) -> str:
    number = _clean(value).lstrip("#")
    if not number:
        return ""
    if re.match(r"^(issue|no\.?)\s", number, re.IGNORECASE):
        return number
    return f"#{number}" if style == "hash" else f"Issue {number}"


def magazine_parts(item: ItemFields, issue_number_style: str = "issue") -> List[str]:
    publication = _clean(_MAGAZINE_WORD_RE.sub(" ", to_title_case(_clean(item.title)) or ""))
    name = f"{publication} Magazine" if publication else ""

    issue_title = _clean(to_title_case(_clean(item.issue_title)))
    if issue_title.lower() in (publication.lower(), name.lower()):
        issue_title = ""

    return [
        name,
        issue_title,
        _format_issue_number(item.issue_number, issue_number_style),
        format_issue_date(_clean(item.issue_date) or _clean(item.year)) or "",
        _clean(item.promotional_hook),
        _clean(item.included_items),
    ]


def book_parts(item: ItemFields) -> List[str]:
    author = _clean(to_title_case(_clean(item.author)))
    return [
        _clean(to_title_case(_clean(item.title))),
        f"by {author}" if author else "",
        _clean(item.promotional_hook),
    ]


def build_title(
    item: ItemFields,
    prefs: Optional[UserTitlePreferences] = None,
    dedupe: str = DEDUPE_CONSECUTIVE,
    issue_number_style: str = "issue",
    limit: int = MAX_TITLE_LENGTH,
) -> str:
    """Assemble a listing title of at most ``limit`` characters.

    Never returns an empty string: "Untitled" (books) or "Magazine"
    (magazines) stand in when no field contributes any text.
    """
    item_type = detect_item_type(item)
    parts = magazine_parts(item, issue_number_style) if item_type == ITEM_TYPE_MAGAZINE else book_parts(item)

    if prefs:
        parts = list(prefs.title_prefixes) + parts + list(prefs.title_suffixes) + [prefs.custom_text or ""]

    text = " ".join(p for p in (_clean(part) for part in parts) if p)
    text = remove_duplicate_words(text, dedupe)

    if prefs:
        text = append_keywords(text, list(prefs.title_keywords) + list(prefs.shipping_keywords), limit)

    text = truncate_to_limit(text, limit)
    if not text:
        return MAGAZINE_PLACEHOLDER if item_type == ITEM_TYPE_MAGAZINE else BOOK_PLACEHOLDER
    return text
