"""Listing assembly - combines lookup, pricing, titles and AI descriptions.

This is the high-level service that runs the scan-to-draft workflow:
1. Classify the scanned barcode and resolve product metadata
2. Price the item from eBay comps (fallback price when none exist)
3. Build the deterministic listing title
4. Ask the text-generation service for a description

Every step degrades instead of failing: an unresolved barcode still yields a
draft with a placeholder title and the fallback price, and a failed
description call leaves ``description`` as ``None``.

Example usage:
    from resale_lister.listing import ListingAssembler

    assembler = ListingAssembler()
    draft = assembler.create_from_barcode("9780306406157")
    print(draft.title, draft.price)
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Union

import requests

from resale_lister import market
from resale_lister.ai import DescriptionGenerator, GenerationError, build_listing_prompt
from resale_lister.config import settings
from resale_lister.metadata import create_http_session, lookup_barcode
from resale_lister.models import (
    ItemFields,
    ListingDraft,
    ListingOutcome,
    PriceStatistics,
    ProductMetadata,
    UserTitlePreferences,
)
from resale_lister.title_builder import build_title

logger = logging.getLogger(__name__)

Pricer = Callable[..., PriceStatistics]


class ListingAssembler:
    """Build listing drafts from resolved metadata and market comps."""

    def __init__(
        self,
        generator: Optional[DescriptionGenerator] = None,
        pricer: Optional[Pricer] = None,
        session: Optional[requests.Session] = None,
        condition: str = "Used",
    ):
        self.generator = generator or DescriptionGenerator()
        self.pricer = pricer or market.price_item
        self.session = session
        self.condition = condition

    def _describe(self, item: ItemFields, metadata: Optional[ProductMetadata], price: float, title: str) -> Optional[str]:
        prompt = build_listing_prompt(item, metadata, price=price, title=title)
        try:
            return self.generator.generate_description(prompt)
        except GenerationError as exc:
            logger.warning(f"Description generation failed, continuing without one: {exc}")
            return None

    def assemble(
        self,
        metadata: Optional[ProductMetadata],
        statistics: Optional[PriceStatistics],
        item: Optional[ItemFields] = None,
        prefs: Optional[UserTitlePreferences] = None,
    ) -> ListingDraft:
        """Combine title, price and description into one draft."""
        if item is None:
            item = ItemFields.from_metadata(metadata) if metadata else ItemFields()
        if item.condition is None:
            item = replace(item, condition=self.condition)

        if statistics is not None and statistics.suggested_price is not None:
            price = market.round_price(statistics.suggested_price)
        else:
            price = market.fallback_price()

        title = build_title(item, prefs)
        description = self._describe(item, metadata, price, title)
        return ListingDraft(
            title=title,
            description=description,
            price=price,
            metadata=metadata,
            statistics=statistics,
        )

    def _price_for(self, metadata: Optional[ProductMetadata]) -> PriceStatistics:
        if metadata is None:
            return PriceStatistics(count=0, suggested_price=market.fallback_price(), source="fallback")
        query = metadata.title
        if metadata.is_magazine and query and metadata.inferred_year:
            query = " ".join(p for p in (query, metadata.inferred_month, metadata.inferred_year) if p)
        return self.pricer(isbn=metadata.isbn13, query=query, condition=self.condition, session=self.session)

    def create_from_barcode(
        self,
        raw: str,
        prefs: Optional[UserTitlePreferences] = None,
    ) -> ListingDraft:
        """Run the full scan-to-draft pipeline for one barcode."""
        own_session: Optional[requests.Session] = None
        if self.session is None:
            own_session = create_http_session()
            self.session = own_session
        try:
            metadata = lookup_barcode(raw, session=self.session)
            if metadata is None:
                logger.info(f"No product found for {raw!r}; drafting for manual entry")
            statistics = self._price_for(metadata)
            return self.assemble(metadata, statistics, prefs=prefs)
        finally:
            if own_session is not None:
                own_session.close()
                self.session = None

    def assemble_batch(
        self,
        items: Iterable[Union[str, ItemFields]],
        prefs: Optional[UserTitlePreferences] = None,
        delay: Optional[float] = None,
    ) -> List[ListingOutcome]:
        """Draft listings one after another, pausing between items.

        Strings are treated as barcodes and run through the whole pipeline;
        :class:`ItemFields` are drafted directly from the given fields. A
        failing item is reported in its outcome and the loop carries on.
        """
        pause = settings.BATCH_DELAY if delay is None else delay
        outcomes: List[ListingOutcome] = []
        for index, entry in enumerate(items):
            if index and pause:
                time.sleep(pause)
            try:
                if isinstance(entry, ItemFields):
                    query = entry.isbn or entry.title
                    statistics = self.pricer(isbn=entry.isbn, query=query, condition=self.condition, session=self.session)
                    draft = self.assemble(None, statistics, item=entry, prefs=prefs)
                else:
                    draft = self.create_from_barcode(str(entry), prefs=prefs)
            except Exception as exc:
                logger.error(f"Listing {index} failed: {exc}")
                outcomes.append(ListingOutcome(index=index, status="error", error=str(exc)))
                continue
            outcomes.append(ListingOutcome(index=index, status="success", listing=draft))

        success = sum(1 for o in outcomes if o.ok)
        logger.info(f"Batch complete: {success}/{len(outcomes)} drafts created")
        return outcomes
