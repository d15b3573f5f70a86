from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .constants import DEFAULT_FALLBACK_PRICE, ITEM_TYPE_BOOK, ITEM_TYPE_MAGAZINE


class BarcodeKind(Enum):
    """Barcode families recognised by the scanner pipeline."""
    ISBN13 = "ISBN13"
    ISBN10 = "ISBN10"
    UPCA = "UPCA"
    EAN13_MAGAZINE = "EAN13_MAGAZINE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class BarcodeClassification:
    kind: BarcodeKind
    code: str
    addon: Optional[str] = None


@dataclass
class MagazineAddonInference:
    inferred_issue: Optional[str] = None
    suggested_price: Optional[float] = None
    inferred_month: Optional[str] = None
    inferred_year: Optional[str] = None


@dataclass
class ProductMetadata:
    """Metadata normalised across book and product lookup sources."""
    type: str
    title: Optional[str] = None
    authors: Optional[List[str]] = None
    publisher: Optional[str] = None
    publication_year: Optional[str] = None
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    cover_url: Optional[str] = None
    isbn13: Optional[str] = None
    barcode: Optional[str] = None
    barcode_addon: Optional[str] = None
    source: str = "unknown"
    # Magazine inference merged into the draft record
    inferred_month: Optional[str] = None
    inferred_year: Optional[str] = None
    inferred_issue: Optional[str] = None
    suggested_price: Optional[float] = None

    @property
    def is_magazine(self) -> bool:
        return self.type == ITEM_TYPE_MAGAZINE

    def apply_inference(self, inference: MagazineAddonInference) -> None:
        self.inferred_month = inference.inferred_month
        self.inferred_year = inference.inferred_year
        self.inferred_issue = inference.inferred_issue
        self.suggested_price = inference.suggested_price
        if not self.publication_year and inference.inferred_year:
            self.publication_year = inference.inferred_year

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PriceComp:
    """A single comparable listing."""
    price: float
    shipping_cost: float = 0.0
    title: Optional[str] = None
    item_id: Optional[str] = None

    def total(self, include_shipping: bool = True) -> float:
        try:
            price = float(self.price)
        except (TypeError, ValueError):
            return math.nan
        if not include_shipping:
            return price
        try:
            ship = float(self.shipping_cost or 0.0)
        except (TypeError, ValueError):
            ship = 0.0
        return price + (ship if math.isfinite(ship) else 0.0)


@dataclass
class PriceTiers:
    fast: float
    fair: float
    high: float
    max: float


@dataclass
class PriceStatistics:
    count: int
    suggested_price: float = DEFAULT_FALLBACK_PRICE
    average: Optional[float] = None
    median: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    percentiles: Optional[Dict[str, float]] = None
    used: int = 0
    tiers: Optional[PriceTiers] = None
    source: str = "fallback"

    @property
    def has_analytics(self) -> bool:
        return self.count > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UserTitlePreferences:
    title_prefixes: Sequence[str] = field(default_factory=list)
    title_suffixes: Sequence[str] = field(default_factory=list)
    custom_text: Optional[str] = None
    title_keywords: Sequence[str] = field(default_factory=list)
    shipping_keywords: Sequence[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UserTitlePreferences":
        data = data or {}

        def _strings(value: Any) -> List[str]:
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, (list, tuple)):
                return []
            return [str(v).strip() for v in value if v and str(v).strip()]

        custom = data.get("custom_text")
        return cls(
            title_prefixes=_strings(data.get("title_prefixes")),
            title_suffixes=_strings(data.get("title_suffixes")),
            custom_text=(str(custom).strip() or None) if custom else None,
            title_keywords=_strings(data.get("title_keywords")),
            shipping_keywords=_strings(data.get("shipping_keywords")),
        )


@dataclass
class ItemFields:
    """Structured listing fields, either resolved or entered manually."""
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    year: Optional[str] = None
    condition: Optional[str] = None
    category: Optional[str] = None
    isbn: Optional[str] = None
    genre: Optional[str] = None
    issue_number: Optional[str] = None
    issue_date: Optional[str] = None
    issue_title: Optional[str] = None
    promotional_hook: Optional[str] = None
    included_items: Optional[str] = None
    item_type: Optional[str] = None

    @classmethod
    def from_metadata(cls, meta: ProductMetadata, condition: Optional[str] = None) -> "ItemFields":
        authors = meta.authors or []
        issue_date = None
        if meta.is_magazine:
            issue_date = " ".join(p for p in (meta.inferred_month, meta.inferred_year) if p) or None
        return cls(
            title=meta.title,
            author=authors[0] if authors else None,
            publisher=meta.publisher,
            year=meta.publication_year,
            condition=condition,
            category=(meta.categories or [None])[0],
            isbn=meta.isbn13,
            issue_number=meta.inferred_issue if meta.is_magazine else None,
            issue_date=issue_date,
            item_type=meta.type if meta.type in (ITEM_TYPE_BOOK, ITEM_TYPE_MAGAZINE) else None,
        )


@dataclass
class ListingDraft:
    title: str
    price: float
    description: Optional[str] = None
    metadata: Optional[ProductMetadata] = None
    statistics: Optional[PriceStatistics] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "price": self.price,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "statistics": self.statistics.to_dict() if self.statistics else None,
        }


@dataclass
class ListingOutcome:
    """Per-item result of a batch run."""
    index: int
    status: str
    listing: Optional[ListingDraft] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"
