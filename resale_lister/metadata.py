from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .barcode import lookup_code, normalize
from .config import settings
from .constants import (
    DEFAULT_HEADERS,
    ITEM_TYPE_BOOK,
    ITEM_TYPE_MAGAZINE,
    ITEM_TYPE_PRODUCT,
    REQUEST_TIMEOUT,
)
from .magazine import infer_magazine_details
from .models import BarcodeClassification, BarcodeKind, ProductMetadata

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
OPENLIB_DATA_URL = "https://openlibrary.org/api/books"
OPENLIB_COVER_TMPL = "https://covers.openlibrary.org/b/isbn/{isbn}-M.jpg"
UPCITEMDB_URL = "https://api.upcitemdb.com/prod/trial/lookup"

CACHE_TTL_DAYS = 365
_CACHE_TTL_SECONDS = CACHE_TTL_DAYS * 24 * 60 * 60

_MAGAZINE_TITLE_RE = re.compile(r"\b(jan|feb|mar|apr|may|jun|jul|aug|sept?|oct|nov|dec)\b", re.IGNORECASE)


# ------------------------------ Cache helpers ------------------------------ #
def _cache_path() -> str:
    return str(settings.CACHE_DIR / "metadata_cache.json")


def _cache_enabled() -> bool:
    return os.getenv("RESALE_LISTER_DISABLE_CACHE", "").strip().lower() not in ("1", "true", "yes")


def _cache_load() -> Dict[str, Any]:
    try:
        with open(_cache_path(), "r", encoding="utf-8") as fh:
            data = json.load(fh)
        return data if isinstance(data, dict) else {}
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning(f"Ignoring unreadable metadata cache: {exc}")
        return {}


def _cache_save(obj: Dict[str, Any]) -> None:
    path = _cache_path()
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(obj, fh, ensure_ascii=False, indent=2)
    except OSError as exc:
        logger.warning(f"Could not write metadata cache: {exc}")


def cache_get(code: str) -> Optional[ProductMetadata]:
    if not code or not _cache_enabled():
        return None
    entry = _cache_load().get(code)
    if not isinstance(entry, dict):
        return None
    timestamp = entry.get("ts")
    if not isinstance(timestamp, (int, float)):
        return None
    if time.time() - float(timestamp) > _CACHE_TTL_SECONDS:
        return None
    meta = entry.get("meta")
    if not isinstance(meta, dict):
        return None
    try:
        return ProductMetadata(**meta)
    except TypeError:
        return None


def cache_set(code: str, meta: ProductMetadata) -> None:
    if not code or not _cache_enabled():
        return
    data = _cache_load()
    data[code] = {"ts": time.time(), "meta": meta.to_dict()}
    _cache_save(data)


# ------------------------------ HTTP helpers ------------------------------ #
def create_http_session() -> requests.Session:
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    return session


def _get_json(sess: requests.Session, url: str, params: Dict[str, str], source: str) -> Optional[Any]:
    try:
        response = sess.get(url, params=params, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        logger.warning(f"{source} request failed: {exc}")
        return None
    if response.status_code != 200:
        logger.info(f"{source} returned HTTP {response.status_code}")
        return None
    try:
        return response.json()
    except ValueError:
        logger.warning(f"{source} returned a non-JSON body")
        return None


# ------------------------------ Field coercion ----------------------------- #
def _str_or_none(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def _str_list(value: Any, key: Optional[str] = None) -> Optional[List[str]]:
    """Coerce a scalar, list of strings or list of ``{key: ...}`` dicts to a list."""
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        value = [value]
    out: List[str] = []
    for entry in value:
        if isinstance(entry, dict):
            entry = entry.get(key) if key else None
        text = _str_or_none(entry)
        if text:
            out.append(text)
    return out or None


def _year_from(value: Any) -> Optional[str]:
    text = _str_or_none(value)
    if not text:
        return None
    match = re.search(r"\d{4}", text)
    return match.group(0) if match else None


def _https(url: Optional[str]) -> Optional[str]:
    if isinstance(url, str) and url.startswith("http://"):
        return "https://" + url[len("http://") :]
    return url


# ------------------------------ Google Books ------------------------------- #
def _fetch_google_books_raw(isbn: str, api_key: Optional[str], sess: requests.Session) -> Optional[Dict[str, Any]]:
    params = {"q": f"isbn:{isbn}", "maxResults": "5", "printType": "books"}
    if api_key:
        params["key"] = api_key
    payload = _get_json(sess, GOOGLE_BOOKS_URL, params, "Google Books")
    if not isinstance(payload, dict):
        return None
    items = payload.get("items") or []
    if not isinstance(items, list):
        return None
    for item in items:
        info = item.get("volumeInfo") if isinstance(item, dict) else None
        if isinstance(info, dict):
            return info
    return None


def _normalize_from_gbooks(info: Dict[str, Any], isbn: str) -> ProductMetadata:
    image_links = info.get("imageLinks")
    if not isinstance(image_links, dict):
        image_links = {}
    cover_url = _str_or_none(image_links.get("thumbnail")) or _str_or_none(image_links.get("smallThumbnail"))

    return ProductMetadata(
        type=ITEM_TYPE_BOOK,
        title=_str_or_none(info.get("title")),
        authors=_str_list(info.get("authors")),
        publisher=_str_or_none(info.get("publisher")),
        publication_year=_year_from(info.get("publishedDate")),
        description=_str_or_none(info.get("description")),
        categories=_str_list(info.get("categories")),
        cover_url=_https(cover_url),
        isbn13=isbn,
        barcode=isbn,
        source="google_books",
    )


def fetch_google_books(isbn: str, sess: requests.Session) -> Optional[ProductMetadata]:
    info = _fetch_google_books_raw(isbn, settings.GOOGLE_BOOKS_API_KEY, sess)
    if not info:
        return None
    return _normalize_from_gbooks(info, isbn)


# ------------------------------ Open Library ------------------------------- #
def _normalize_from_open_library(record: Dict[str, Any], isbn: str) -> ProductMetadata:
    description = record.get("description")
    if isinstance(description, dict):
        description = description.get("value")

    cover = record.get("cover")
    cover_url = None
    if isinstance(cover, dict):
        cover_url = _str_or_none(cover.get("medium")) or _str_or_none(cover.get("large"))

    return ProductMetadata(
        type=ITEM_TYPE_BOOK,
        title=_str_or_none(record.get("title")),
        authors=_str_list(record.get("authors"), key="name"),
        publisher=(_str_list(record.get("publishers"), key="name") or [None])[0],
        publication_year=_year_from(record.get("publish_date")),
        description=_str_or_none(description),
        categories=_str_list(record.get("subjects"), key="name"),
        cover_url=_https(cover_url) or OPENLIB_COVER_TMPL.format(isbn=isbn),
        isbn13=isbn,
        barcode=isbn,
        source="open_library",
    )


def fetch_open_library(isbn: str, sess: requests.Session) -> Optional[ProductMetadata]:
    params = {"bibkeys": f"ISBN:{isbn}", "format": "json", "jscmd": "data"}
    payload = _get_json(sess, OPENLIB_DATA_URL, params, "Open Library")
    if not isinstance(payload, dict):
        return None
    record = payload.get(f"ISBN:{isbn}")
    if not isinstance(record, dict):
        return None
    return _normalize_from_open_library(record, isbn)


# ------------------------------ UPC database ------------------------------- #
def looks_like_magazine(title: Optional[str], category: Optional[str], description: Optional[str]) -> bool:
    title_l = (title or "").lower()
    category_l = (category or "").lower()
    description_l = (description or "").lower()
    return (
        "magazine" in title_l
        or "issue" in title_l
        or "vol." in title_l
        or "volume" in title_l
        or "magazine" in category_l
        or "periodical" in category_l
        or "magazine" in description_l
        or bool(_MAGAZINE_TITLE_RE.search(title_l))
    )


def _normalize_from_upcitemdb(item: Dict[str, Any], code: str) -> ProductMetadata:
    title = _str_or_none(item.get("title"))
    category = _str_or_none(item.get("category"))
    description = _str_or_none(item.get("description"))
    images = _str_list(item.get("images"))
    is_magazine = looks_like_magazine(title, category, description)

    return ProductMetadata(
        type=ITEM_TYPE_MAGAZINE if is_magazine else ITEM_TYPE_PRODUCT,
        title=title,
        authors=None,
        publisher=_str_or_none(item.get("brand")) or _str_or_none(item.get("publisher")),
        publication_year=None,
        description=description,
        categories=[category] if category else None,
        cover_url=_https(images[0]) if images else None,
        isbn13=None,
        barcode=code,
        source="upcitemdb",
    )


def fetch_upc_database(code: str, sess: requests.Session) -> Optional[ProductMetadata]:
    payload = _get_json(sess, UPCITEMDB_URL, {"upc": code}, "UPCitemdb")
    if not isinstance(payload, dict):
        return None
    items = payload.get("items") or []
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        return None
    return _normalize_from_upcitemdb(items[0], code)


# ------------------------------ Resolution -------------------------------- #
Strategy = Callable[[str, requests.Session], Optional[ProductMetadata]]

BOOK_SOURCES: Tuple[Strategy, ...] = (fetch_google_books, fetch_open_library)
PRODUCT_SOURCES: Tuple[Strategy, ...] = (fetch_upc_database,)


def _first_result(code: str, sources: Sequence[Strategy], sess: requests.Session) -> Optional[ProductMetadata]:
    for source in sources:
        try:
            meta = source(code, sess)
        except Exception as exc:
            logger.warning(f"{source.__name__} failed for {code}: {exc}")
            meta = None
        if meta is not None:
            return meta
        logger.debug(f"{source.__name__} had no result for {code}, trying next source")
    return None


def _resolve_with_session(classification: BarcodeClassification, sess: requests.Session) -> Optional[ProductMetadata]:
    kind = classification.kind
    code = lookup_code(classification)

    if kind in (BarcodeKind.ISBN13, BarcodeKind.ISBN10):
        cached = cache_get(code)
        if cached:
            cached.source = "cache"
            return cached
        meta = _first_result(code, BOOK_SOURCES, sess)
        if meta:
            meta.type = ITEM_TYPE_BOOK
            meta.isbn13 = code
            meta.barcode_addon = classification.addon
            cache_set(code, meta)
        return meta

    if not code:
        return None

    meta = _first_result(code, PRODUCT_SOURCES, sess)
    if meta is None:
        return None
    if kind is BarcodeKind.EAN13_MAGAZINE:
        meta.type = ITEM_TYPE_MAGAZINE
        meta.barcode_addon = classification.addon

    if meta.is_magazine:
        inference = infer_magazine_details(
            classification.addon if kind is BarcodeKind.EAN13_MAGAZINE else None,
            meta.title,
            meta.description,
        )
        meta.apply_inference(inference)
    return meta


def resolve(
    classification: BarcodeClassification,
    session: Optional[requests.Session] = None,
) -> Optional[ProductMetadata]:
    """Look up product metadata for a classified barcode.

    Sources are tried in order and the first non-null answer wins. Any
    failure is logged and treated as "no result"; ``None`` means every
    source was exhausted and the caller should fall back to manual entry.
    """
    own_session: Optional[requests.Session] = None
    sess = session
    if sess is None:
        own_session = create_http_session()
        sess = own_session
    try:
        return _resolve_with_session(classification, sess)
    except Exception as exc:
        logger.error(f"Product resolution failed for {classification.code}: {exc}")
        return None
    finally:
        if own_session is not None:
            own_session.close()


def lookup_barcode(raw: str, session: Optional[requests.Session] = None) -> Optional[ProductMetadata]:
    classification = normalize(raw)
    logger.info(f"Looking up barcode {classification.code or raw!r} as {classification.kind.value}")
    return resolve(classification, session=session)
