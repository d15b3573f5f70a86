from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypedDict
from urllib.parse import urlencode

import requests
from requests.auth import _basic_auth_str

from .config import settings
from .constants import LOT_TITLE_RE
from .models import PriceComp, PriceStatistics, PriceTiers

logger = logging.getLogger(__name__)

EBAY_FINDING_URL = "https://svcs.ebay.com/services/search/FindingService/v1"
BROWSE_URL = "https://api.ebay.com/buy/browse/v1/item_summary/search"
OAUTH_URL = "https://api.ebay.com/identity/v1/oauth2/token"
EBAY_SEARCH_URL = "https://www.ebay.com/sch/i.html"
BOOKS_CATEGORY_ID = "267"

PERCENTILE_LEVELS = (("P10", 0.10), ("P25", 0.25), ("P50", 0.50), ("P75", 0.75), ("P90", 0.90))
# Quantile used for the suggestion when pricing from active listings only
ACTIVE_SUGGESTION_QUANTILE = 0.40


class EbayConfigurationError(ValueError):
    """Raised when eBay credentials are missing."""


class _TokenCache(TypedDict):
    access_token: Optional[str]
    expires_at: float

_token_cache: _TokenCache = {"access_token": None, "expires_at": 0.0}

# Cache for priced queries (1-hour TTL to reduce redundant API calls)
_comps_cache: Dict[str, Tuple[PriceStatistics, float]] = {}
_COMPS_CACHE_TTL = 3600


def fallback_price() -> float:
    return round_price(settings.FALLBACK_PRICE)


# ============================ Statistics ============================ #

def round_price(value: float) -> float:
    return round(value, 2)


def ceil_to_99(value: float) -> float:
    """Retail-style ending: 12.10 -> 12.99, 0.40 -> 0.99."""
    return round(max(0.99, math.floor(value) + 0.99), 2)


def quantile(sorted_values: Sequence[float], p: float) -> float:
    """Linear-interpolated quantile of an ascending sequence."""
    if not sorted_values:
        raise ValueError("quantile() requires at least one value")
    pos = (len(sorted_values) - 1) * p
    base = int(math.floor(pos))
    rest = pos - base
    lower = sorted_values[base]
    upper = sorted_values[base + 1] if base + 1 < len(sorted_values) else lower
    return lower + rest * (upper - lower)


def trim_outliers_iqr(sorted_values: Sequence[float]) -> List[float]:
    """Drop values outside ``[Q1 - 1.5*IQR, Q3 + 1.5*IQR]``.

    Returns the untrimmed values when trimming would remove everything.
    """
    if not sorted_values:
        return []
    q1 = quantile(sorted_values, 0.25)
    q3 = quantile(sorted_values, 0.75)
    iqr = q3 - q1
    low, high = q1 - 1.5 * iqr, q3 + 1.5 * iqr
    cleaned = [v for v in sorted_values if low <= v <= high]
    return cleaned or list(sorted_values)


def suggestion_tiers(sorted_values: Sequence[float]) -> PriceTiers:
    return PriceTiers(
        fast=ceil_to_99(round_price(quantile(sorted_values, 0.30))),
        fair=ceil_to_99(round_price(quantile(sorted_values, 0.50))),
        high=ceil_to_99(round_price(quantile(sorted_values, 0.60))),
        max=ceil_to_99(round_price(quantile(sorted_values, 0.70))),
    )


def _as_comp(item: Any) -> Optional[PriceComp]:
    if isinstance(item, PriceComp):
        return item
    if isinstance(item, dict):
        return PriceComp(
            price=item.get("price"),  # type: ignore[arg-type]
            shipping_cost=item.get("shipping_cost", item.get("shippingCost")) or 0.0,
            title=item.get("title"),
            item_id=item.get("item_id"),
        )
    if isinstance(item, (int, float)):
        return PriceComp(price=float(item))
    return None


def clean_totals(items: Iterable[Any], include_shipping: bool = True) -> List[float]:
    totals: List[float] = []
    for item in items:
        comp = _as_comp(item)
        if comp is None:
            continue
        total = comp.total(include_shipping)
        if math.isfinite(total):
            totals.append(total)
    totals.sort()
    return totals


def compute_statistics(
    items: Iterable[Any],
    include_shipping: bool = True,
    suggestion_quantile: float = 0.5,
    trim_outliers: bool = False,
    source: str = "comps",
) -> PriceStatistics:
    """Summarise comparable prices.

    ``items`` may be :class:`PriceComp` objects, ``{"price", "shipping_cost"}``
    dicts or bare numbers. With ``trim_outliers`` the suggestion and the
    fast/fair/high/max tiers come from the IQR-cleaned set; the descriptive
    figures always describe the full set.
    """
    values = clean_totals(items, include_shipping)
    if not values:
        return PriceStatistics(count=0, suggested_price=fallback_price(), source="fallback")

    basis = trim_outliers_iqr(values) if trim_outliers else values
    percentiles = {name: round_price(quantile(values, p)) for name, p in PERCENTILE_LEVELS}

    return PriceStatistics(
        count=len(values),
        suggested_price=round_price(quantile(basis, suggestion_quantile)),
        average=round_price(sum(values) / len(values)),
        median=round_price(quantile(values, 0.5)),
        min=round_price(values[0]),
        max=round_price(values[-1]),
        percentiles=percentiles,
        used=len(basis),
        tiers=suggestion_tiers(basis) if trim_outliers else None,
        source=source,
    )


# ============================ eBay access ============================ #

def _retry_with_exponential_backoff(
    func: Callable[[], requests.Response],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
) -> requests.Response:
    """
    Retry a request on rate limiting (HTTP 429/503) with exponential backoff.

    Transport errors are retried the same way; the last one is re-raised.
    """
    delay = initial_delay
    for attempt in range(max_retries + 1):
        try:
            response = func()
        except requests.RequestException as exc:
            if attempt >= max_retries:
                raise
            wait_time = min(delay, max_delay)
            logger.warning(f"eBay call failed: {exc}, retrying in {wait_time:.1f}s (attempt {attempt + 1}/{max_retries + 1})")
            time.sleep(wait_time)
            delay *= backoff_factor
            continue

        if response.status_code in (429, 503) and attempt < max_retries:
            wait_time = min(delay, max_delay)
            logger.warning(f"Rate limited (HTTP {response.status_code}), retrying in {wait_time:.1f}s (attempt {attempt + 1}/{max_retries + 1})")
            time.sleep(wait_time)
            delay *= backoff_factor
            continue
        return response
    raise RuntimeError("unreachable")  # pragma: no cover


def get_app_token(session: Optional[requests.Session] = None) -> str:
    now = time.time()
    if _token_cache.get("access_token") and float(_token_cache.get("expires_at", 0)) - now > 120:
        return str(_token_cache["access_token"])
    cid = settings.EBAY_CLIENT_ID
    csec = settings.EBAY_CLIENT_SECRET
    if not cid or not csec:
        raise EbayConfigurationError("EBAY_CLIENT_ID/EBAY_CLIENT_SECRET not set")
    poster = session.post if session is not None else requests.post
    r = poster(
        OAUTH_URL,
        headers={"Content-Type": "application/x-www-form-urlencoded", "Authorization": _basic_auth_str(cid, csec)},
        data={"grant_type": "client_credentials", "scope": "https://api.ebay.com/oauth/api_scope"},
        timeout=20,
    )
    r.raise_for_status()
    js = r.json()
    token = js.get("access_token") if isinstance(js, dict) else None
    if not isinstance(token, str) or not token:
        raise EbayConfigurationError("eBay token endpoint returned no access_token")
    expires_in = _to_float(js.get("expires_in", 7200))
    _token_cache["access_token"] = token
    _token_cache["expires_at"] = now + (expires_in if math.isfinite(expires_in) else 7200.0)
    return str(_token_cache["access_token"])


def _first_or_default(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, tuple)):
        return ""
    return str(value).strip()


def is_lot_listing(title: Any) -> bool:
    text = _text(title)
    return bool(text) and bool(LOT_TITLE_RE.search(text))


def extract_finding_comps(payload: Dict[str, Any]) -> List[PriceComp]:
    """Map a ``findCompletedItems`` response to price comps (lots skipped)."""
    root = _first_or_default(payload.get("findCompletedItemsResponse")) if isinstance(payload, dict) else None
    if not isinstance(root, dict):
        return []
    search = _first_or_default(root.get("searchResult"))
    if not isinstance(search, dict):
        return []
    items = search.get("item") or []
    if isinstance(items, dict):
        items = [items]

    comps: List[PriceComp] = []
    for it in items:
        if not isinstance(it, dict):
            continue
        title = _text(_first_or_default(it.get("title")))
        if is_lot_listing(title):
            continue
        status = _first_or_default(it.get("sellingStatus")) or {}
        price_info = _first_or_default(status.get("currentPrice")) if isinstance(status, dict) else None
        price = _to_float(price_info.get("__value__") if isinstance(price_info, dict) else None)
        if not math.isfinite(price):
            continue
        shipping = _first_or_default(it.get("shippingInfo")) or {}
        ship_info = _first_or_default(shipping.get("shippingServiceCost")) if isinstance(shipping, dict) else None
        ship = _to_float(ship_info.get("__value__") if isinstance(ship_info, dict) else 0.0)
        comps.append(PriceComp(
            price=price,
            shipping_cost=ship if math.isfinite(ship) else 0.0,
            title=title,
            item_id=_text(_first_or_default(it.get("itemId"))) or None,
        ))
    return comps


def fetch_sold_comps(
    isbn: Optional[str] = None,
    upc: Optional[str] = None,
    ean: Optional[str] = None,
    query: Optional[str] = None,
    condition: str = "Used",
    fixed_only: bool = True,
    session: Optional[requests.Session] = None,
) -> List[PriceComp]:
    """Sold listings from the eBay Finding API (``findCompletedItems``)."""
    app_id = settings.EBAY_APP_ID
    if not app_id:
        raise EbayConfigurationError("EBAY_APP_ID/EBAY_CLIENT_ID not set")

    params: Dict[str, str] = {
        "OPERATION-NAME": "findCompletedItems",
        "SERVICE-VERSION": "1.13.0",
        "SECURITY-APPNAME": app_id,
        "RESPONSE-DATA-FORMAT": "JSON",
        "REST-PAYLOAD": "true",
        "GLOBAL-ID": settings.EBAY_GLOBAL_ID,
    }
    if upc:
        params.update({"productId.@type": "UPC", "productId": upc})
    elif ean:
        params.update({"productId.@type": "EAN", "productId": ean})
    elif isbn:
        params.update({"productId.@type": "ISBN", "productId": isbn})
    else:
        params["keywords"] = query or ""

    params.update({
        "itemFilter(0).name": "SoldItemsOnly",
        "itemFilter(0).value": "true",
        "itemFilter(1).name": "Condition",
        "itemFilter(1).value": condition,
    })
    if fixed_only:
        params.update({"itemFilter(2).name": "ListingType", "itemFilter(2).value": "FixedPrice"})
    params.update({"paginationInput.entriesPerPage": str(settings.EBAY_ENTRIES), "sortOrder": "EndTimeSoonest"})

    getter = session.get if session is not None else requests.get
    r = _retry_with_exponential_backoff(lambda: getter(EBAY_FINDING_URL, params=params, timeout=20))
    r.raise_for_status()
    comps = extract_finding_comps(r.json() or {})
    logger.info(f"Finding API returned {len(comps)} sold comps")
    return comps


def extract_browse_comps(payload: Dict[str, Any]) -> List[PriceComp]:
    items = payload.get("itemSummaries") if isinstance(payload, dict) else None
    comps: List[PriceComp] = []
    for it in items or []:
        if not isinstance(it, dict):
            continue
        title = _text(it.get("title"))
        if is_lot_listing(title):
            continue
        price_info = it.get("price") if isinstance(it.get("price"), dict) else {}
        price = _to_float(price_info.get("value"))
        if not math.isfinite(price):
            continue
        options = it.get("shippingOptions") or []
        first = options[0] if isinstance(options, list) and options and isinstance(options[0], dict) else {}
        cost = first.get("shippingCost") if isinstance(first.get("shippingCost"), dict) else {}
        ship = _to_float(cost.get("value", 0.0))
        comps.append(PriceComp(
            price=price,
            shipping_cost=ship if math.isfinite(ship) else 0.0,
            title=title,
            item_id=_text(it.get("itemId")) or None,
        ))
    return comps


def fetch_active_comps(
    query: str,
    condition: str = "Used",
    limit: int = 50,
    category_id: Optional[str] = BOOKS_CATEGORY_ID,
    session: Optional[requests.Session] = None,
) -> List[PriceComp]:
    """Active listings from the eBay Browse API."""
    tok = get_app_token(session)
    params = {
        "q": query,
        "limit": str(min(100, max(10, limit))),
        "sort": "price",
        "filter": f"conditions:{{{condition.upper()}}},buyingOptions:{{FIXED_PRICE|AUCTION}}",
    }
    if category_id:
        params["category_ids"] = category_id
    getter = session.get if session is not None else requests.get
    r = _retry_with_exponential_backoff(
        lambda: getter(
            BROWSE_URL,
            params=params,
            headers={"Authorization": f"Bearer {tok}", "X-EBAY-C-MARKETPLACE-ID": settings.EBAY_MARKETPLACE},
            timeout=30,
        )
    )
    r.raise_for_status()
    comps = extract_browse_comps(r.json() or {})
    logger.info(f"Browse API returned {len(comps)} active comps for {query!r}")
    return comps


# ============================ Pricing chain ============================ #

def _price_from_sold(isbn: Optional[str], query: Optional[str], condition: str, session: Optional[requests.Session]) -> Optional[PriceStatistics]:
    comps = fetch_sold_comps(isbn=isbn, query=None if isbn else query, condition=condition, session=session)
    if not comps:
        return None
    stats = compute_statistics(comps, include_shipping=True, trim_outliers=True, source="sold")
    if stats.tiers is not None:
        stats.suggested_price = stats.tiers.fair
    return stats


def _price_from_active(isbn: Optional[str], query: Optional[str], condition: str, session: Optional[requests.Session]) -> Optional[PriceStatistics]:
    q = (isbn or query or "").strip()
    if not q:
        return None
    comps = fetch_active_comps(q, condition=condition, session=session)
    if not comps:
        return None
    stats = compute_statistics(comps, include_shipping=True, suggestion_quantile=ACTIVE_SUGGESTION_QUANTILE, source="active")
    if stats.count:
        stats.suggested_price = ceil_to_99(stats.suggested_price)
    return stats


PRICING_STRATEGIES = (_price_from_sold, _price_from_active)


def price_item(
    isbn: Optional[str] = None,
    query: Optional[str] = None,
    condition: str = "Used",
    session: Optional[requests.Session] = None,
    use_cache: bool = True,
) -> PriceStatistics:
    """Price an item from market comps.

    Sold comps are tried first, then active listings; the first source that
    yields prices wins. When every source fails or comes back empty the
    fixed fallback price is returned with ``count == 0``.
    """
    cache_key = f"{isbn or ''}|{(query or '').strip().lower()}|{condition}"
    now = time.time()
    if use_cache and cache_key in _comps_cache:
        cached, expires_at = _comps_cache[cache_key]
        if expires_at > now:
            return cached
        del _comps_cache[cache_key]

    if not isbn and not (query or "").strip():
        return PriceStatistics(count=0, suggested_price=fallback_price(), source="fallback")

    for strategy in PRICING_STRATEGIES:
        try:
            stats = strategy(isbn, query, condition, session)
        except EbayConfigurationError as exc:
            logger.warning(f"Skipping {strategy.__name__}: {exc}")
            continue
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"{strategy.__name__} failed: {exc}")
            continue
        if stats is not None and stats.count > 0:
            _prune_comps_cache(now)
            _comps_cache[cache_key] = (stats, now + _COMPS_CACHE_TTL)
            return stats

    logger.info(f"No comps found for {isbn or query!r}; using fallback price")
    return PriceStatistics(count=0, suggested_price=fallback_price(), source="fallback")


def _prune_comps_cache(now: float) -> None:
    for key in [k for k, (_, expires_at) in _comps_cache.items() if expires_at <= now]:
        del _comps_cache[key]


def clear_comps_cache() -> None:
    _comps_cache.clear()


# ============================ Bulk pricing ============================ #

STRATEGY_ACTIVE_LISTINGS = "ACTIVE_LISTINGS"
STRATEGY_COVER_MULTIPLIER = "COVER_MULTIPLIER"
STRATEGY_FLAT = "FLAT"
STRATEGY_MIN_OF = "MIN_OF"
BULK_STRATEGIES = (STRATEGY_ACTIVE_LISTINGS, STRATEGY_COVER_MULTIPLIER, STRATEGY_FLAT, STRATEGY_MIN_OF)


@dataclass
class BulkPricingConfig:
    include_shipping: bool = False
    limit_per_item: int = 50
    multiplier: Optional[float] = None
    flat: Optional[float] = None
    floor: Optional[float] = None
    ceiling: Optional[float] = None
    rounding: str = ".99"


@dataclass
class BulkPriceResult:
    index: int
    input: Dict[str, Any]
    price: float
    source: str
    statistics: Optional[PriceStatistics] = None
    links: Dict[str, str] = field(default_factory=dict)
    note: Optional[str] = None


def sold_comps_link(query: str) -> str:
    return f"{EBAY_SEARCH_URL}?{urlencode({'_nkw': query, 'LH_Sold': '1', 'LH_Complete': '1'})}"


def active_search_link(query: str) -> str:
    return f"{EBAY_SEARCH_URL}?{urlencode({'_nkw': query, 'rt': 'nc'})}"


def clamp(value: float, floor: Optional[float] = None, ceiling: Optional[float] = None) -> float:
    if floor is not None:
        value = max(floor, value)
    if ceiling is not None:
        value = min(ceiling, value)
    return value


def apply_rounding(value: float, mode: str = ".99") -> float:
    if mode == ".99":
        return ceil_to_99(value)
    return round_price(value)


def _finite(value: Any) -> Optional[float]:
    number = _to_float(value)
    return number if math.isfinite(number) else None


def bulk_price(
    items: Sequence[Dict[str, Any]],
    strategy: str,
    config: Optional[BulkPricingConfig] = None,
    session: Optional[requests.Session] = None,
) -> List[BulkPriceResult]:
    """Price many items with one strategy.

    Items are dicts with any of ``isbn``, ``issn``, ``title``, ``cover_price``
    and ``condition``. Failures are recorded as notes and never stop the run.
    """
    if strategy not in BULK_STRATEGIES:
        raise ValueError(f"Unknown pricing strategy: {strategy}")
    cfg = config or BulkPricingConfig()
    limit = min(100, max(10, cfg.limit_per_item))
    uses_market = strategy in (STRATEGY_ACTIVE_LISTINGS, STRATEGY_MIN_OF)

    results: List[BulkPriceResult] = []
    for index, item in enumerate(items):
        q = str(item.get("isbn") or item.get("issn") or item.get("title") or "").strip()
        condition = item.get("condition") or "Used"
        notes: List[str] = []
        links = {
            "sold_comps": sold_comps_link(q or "book"),
            "active_search": active_search_link(q or "book"),
        }

        active_price: Optional[float] = None
        stats: Optional[PriceStatistics] = None
        if uses_market and q:
            try:
                comps = fetch_active_comps(q, condition=condition, limit=limit, session=session)
            except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
                notes.append(f"Browse error: {exc}")
                comps = []
            if comps:
                stats = compute_statistics(
                    comps,
                    include_shipping=cfg.include_shipping,
                    suggestion_quantile=ACTIVE_SUGGESTION_QUANTILE,
                    source="active",
                )
                if stats.count:
                    active_price = stats.suggested_price
            elif not notes:
                notes.append("No active results")

        cover_based: Optional[float] = None
        cover_price = _finite(item.get("cover_price"))
        if strategy in (STRATEGY_COVER_MULTIPLIER, STRATEGY_MIN_OF) and cover_price is not None and cfg.multiplier is not None:
            cover_based = cover_price * cfg.multiplier

        flat_based: Optional[float] = None
        if strategy in (STRATEGY_FLAT, STRATEGY_MIN_OF) and cfg.flat is not None:
            flat_based = float(cfg.flat)

        chosen = fallback_price()
        source = "FALLBACK"
        candidates = [c for c in (active_price, cover_based, flat_based) if c is not None and math.isfinite(c)]
        if strategy == STRATEGY_ACTIVE_LISTINGS and active_price is not None:
            chosen, source = active_price, STRATEGY_ACTIVE_LISTINGS
        elif strategy == STRATEGY_COVER_MULTIPLIER and cover_based is not None:
            chosen, source = cover_based, STRATEGY_COVER_MULTIPLIER
        elif strategy == STRATEGY_FLAT and flat_based is not None:
            chosen, source = flat_based, STRATEGY_FLAT
        elif strategy == STRATEGY_MIN_OF and candidates:
            chosen, source = min(candidates), STRATEGY_MIN_OF

        chosen = apply_rounding(clamp(chosen, cfg.floor, cfg.ceiling), cfg.rounding)
        results.append(BulkPriceResult(
            index=index,
            input=dict(item),
            price=round_price(chosen),
            source=source,
            statistics=stats,
            links=links,
            note=" | ".join(notes) or None,
        ))
    return results
