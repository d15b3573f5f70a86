"""Tests for comps statistics, eBay comps sources and pricing strategies."""
from __future__ import annotations

import math
import time
from unittest.mock import Mock, patch

import pytest
import requests

from resale_lister import market
from resale_lister.config import settings
from resale_lister.market import (
    BulkPricingConfig,
    EbayConfigurationError,
    ceil_to_99,
    compute_statistics,
    extract_browse_comps,
    extract_finding_comps,
    is_lot_listing,
    price_item,
    quantile,
    trim_outliers_iqr,
)
from resale_lister.models import PriceComp

from conftest import make_response


FINDING_PAYLOAD = {
    "findCompletedItemsResponse": [{
        "searchResult": [{
            "item": [
                {
                    "itemId": ["111"],
                    "title": ["Dune by Frank Herbert"],
                    "sellingStatus": [{"currentPrice": [{"__value__": "10.00"}]}],
                    "shippingInfo": [{"shippingServiceCost": [{"__value__": "3.50"}]}],
                },
                {
                    "itemId": ["222"],
                    "title": ["Lot of 5 Dune books"],
                    "sellingStatus": [{"currentPrice": [{"__value__": "40.00"}]}],
                },
                {
                    "itemId": ["333"],
                    "title": ["Dune"],
                    "sellingStatus": [{"currentPrice": [{"__value__": "n/a"}]}],
                },
                {
                    "itemId": ["444"],
                    "title": ["Dune hardcover"],
                    "sellingStatus": [{"currentPrice": [{"__value__": "12.00"}]}],
                },
            ]
        }]
    }]
}

BROWSE_PAYLOAD = {
    "itemSummaries": [
        {
            "itemId": "v1|1|0",
            "title": "Dune",
            "price": {"value": "12.50", "currency": "USD"},
            "shippingOptions": [{"shippingCost": {"value": "4.00"}}],
        },
        {"itemId": "v1|2|0", "title": "Dune Set of 3", "price": {"value": "30.00"}},
        {"itemId": "v1|3|0", "title": "Dune paperback", "price": {"value": "8.00"}},
    ]
}


def comps(*prices):
    return [PriceComp(price=p) for p in prices]


@pytest.mark.unit
class TestStatistics:
    def test_quantile_interpolates(self):
        assert quantile([10.0, 20.0], 0.4) == pytest.approx(14.0)
        assert quantile([1.0, 2.0, 3.0, 4.0], 0.5) == pytest.approx(2.5)

    def test_quantile_single_value(self):
        assert quantile([42.0], 0.9) == 42.0

    def test_quantile_empty_raises(self):
        with pytest.raises(ValueError):
            quantile([], 0.5)

    def test_quantile_is_monotonic(self):
        values = sorted([3.0, 9.5, 1.0, 7.25, 7.25, 20.0, 4.0])
        levels = [i / 20 for i in range(21)]
        results = [quantile(values, p) for p in levels]
        assert results == sorted(results)
        assert results[0] == values[0]
        assert results[-1] == values[-1]

    def test_ceil_to_99(self):
        assert ceil_to_99(12.10) == 12.99
        assert ceil_to_99(12.0) == 12.99
        assert ceil_to_99(0.40) == 0.99

    def test_iqr_drops_outlier(self):
        assert trim_outliers_iqr([5.0, 10.0, 10.0, 15.0, 1000.0]) == [5.0, 10.0, 10.0, 15.0]

    def test_iqr_keeps_everything_when_nothing_survives(self):
        assert trim_outliers_iqr([7.0]) == [7.0]
        assert trim_outliers_iqr([]) == []

    def test_trimmed_statistics(self):
        stats = compute_statistics(comps(5, 10, 10, 15, 1000), trim_outliers=True)

        assert stats.count == 5
        assert stats.used == 4
        assert stats.suggested_price == 10.0
        assert stats.median == 10.0
        assert stats.max == 1000.0
        assert stats.average == 208.0
        assert stats.tiers.fast == 9.99
        assert stats.tiers.fair == 10.99
        assert stats.tiers.high == 10.99
        assert stats.tiers.max == 10.99

    def test_untrimmed_statistics(self):
        stats = compute_statistics([5, 10, 10, 15, 1000])

        assert stats.suggested_price == 10.0
        assert stats.used == 5
        assert stats.tiers is None
        assert stats.percentiles["P10"] == 7.0
        assert stats.percentiles["P90"] == 606.0
        assert stats.source == "comps"

    def test_empty_comps_use_fallback(self):
        stats = compute_statistics([])

        assert stats.count == 0
        assert stats.suggested_price == 7.99
        assert stats.average is None
        assert stats.median is None
        assert stats.percentiles is None
        assert stats.source == "fallback"
        assert not stats.has_analytics

    def test_non_finite_values_are_dropped(self):
        stats = compute_statistics([math.nan, math.inf, "abc", {"price": "x"}, {"price": 10}])
        assert stats.count == 1
        assert stats.suggested_price == 10.0

    def test_shipping_is_optional(self):
        items = [{"price": 10, "shipping_cost": 4}, {"price": 20, "shippingCost": 2}]
        assert compute_statistics(items).min == 14.0
        assert compute_statistics(items, include_shipping=False).min == 10.0

    def test_fallback_price_follows_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "FALLBACK_PRICE", 4.5)
        assert compute_statistics([]).suggested_price == 4.5


@pytest.mark.unit
class TestExtraction:
    def test_finding_comps(self):
        result = extract_finding_comps(FINDING_PAYLOAD)

        assert [c.item_id for c in result] == ["111", "444"]
        assert result[0].price == 10.0
        assert result[0].shipping_cost == 3.5
        assert result[1].shipping_cost == 0.0

    def test_finding_malformed_payload(self):
        assert extract_finding_comps({}) == []
        assert extract_finding_comps({"findCompletedItemsResponse": [{"searchResult": []}]}) == []

    def test_browse_comps(self):
        result = extract_browse_comps(BROWSE_PAYLOAD)

        assert [c.title for c in result] == ["Dune", "Dune paperback"]
        assert result[0].total() == 16.5
        assert result[1].total() == 8.0

    @pytest.mark.parametrize(
        "title,expected",
        [("Lot of 10 books", True), ("Harry Potter BUNDLE", True), ("Set of 3 novels", True), ("Slot Machines", False), (None, False)],
    )
    def test_lot_detection(self, title, expected):
        assert is_lot_listing(title) is expected


@pytest.mark.integration
class TestEbaySources:
    def test_sold_comps_require_app_id(self):
        with pytest.raises(EbayConfigurationError):
            market.fetch_sold_comps(isbn="9780306406157", session=Mock())

    def test_sold_comps_by_isbn(self, monkeypatch):
        monkeypatch.setattr(settings, "EBAY_APP_ID", "app-id")
        session = Mock()
        session.get.return_value = make_response(FINDING_PAYLOAD)

        result = market.fetch_sold_comps(isbn="9780306406157", session=session)

        assert len(result) == 2
        params = session.get.call_args.kwargs["params"]
        assert params["OPERATION-NAME"] == "findCompletedItems"
        assert params["productId.@type"] == "ISBN"
        assert params["productId"] == "9780306406157"
        assert params["itemFilter(0).name"] == "SoldItemsOnly"
        assert params["itemFilter(1).value"] == "Used"
        assert params["itemFilter(2).value"] == "FixedPrice"
        assert params["SECURITY-APPNAME"] == "app-id"

    def test_sold_comps_keyword_query(self, monkeypatch):
        monkeypatch.setattr(settings, "EBAY_APP_ID", "app-id")
        session = Mock()
        session.get.return_value = make_response(FINDING_PAYLOAD)

        market.fetch_sold_comps(query="dune herbert", fixed_only=False, session=session)

        params = session.get.call_args.kwargs["params"]
        assert params["keywords"] == "dune herbert"
        assert "productId" not in params
        assert "itemFilter(2).name" not in params

    def test_rate_limited_request_is_retried(self, monkeypatch):
        monkeypatch.setattr(settings, "EBAY_APP_ID", "app-id")
        session = Mock()
        session.get.side_effect = [make_response(None, status_code=429), make_response(FINDING_PAYLOAD)]

        with patch("resale_lister.market.time.sleep") as mock_sleep:
            result = market.fetch_sold_comps(isbn="9780306406157", session=session)

        assert len(result) == 2
        assert session.get.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    def test_transport_error_reraised_after_retries(self, monkeypatch):
        monkeypatch.setattr(settings, "EBAY_APP_ID", "app-id")
        session = Mock()
        session.get.side_effect = requests.ConnectionError("down")

        with patch("resale_lister.market.time.sleep"):
            with pytest.raises(requests.ConnectionError):
                market.fetch_sold_comps(isbn="9780306406157", session=session)
        assert session.get.call_count == 4

    def test_app_token_requires_credentials(self):
        with pytest.raises(EbayConfigurationError):
            market.get_app_token(Mock())

    def test_app_token_is_cached(self, monkeypatch):
        monkeypatch.setattr(settings, "EBAY_CLIENT_ID", "cid")
        monkeypatch.setattr(settings, "EBAY_CLIENT_SECRET", "secret")
        session = Mock()
        session.post.return_value = make_response({"access_token": "tok", "expires_in": 7200})

        assert market.get_app_token(session) == "tok"
        assert market.get_app_token(session) == "tok"
        assert session.post.call_count == 1
        assert session.post.call_args.kwargs["headers"]["Authorization"].startswith("Basic ")

    def test_active_comps(self):
        market._token_cache["access_token"] = "tok"
        market._token_cache["expires_at"] = time.time() + 3600
        session = Mock()
        session.get.return_value = make_response(BROWSE_PAYLOAD)

        result = market.fetch_active_comps("Dune", limit=500, session=session)

        assert len(result) == 2
        kwargs = session.get.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["params"]["limit"] == "100"
        assert kwargs["params"]["filter"].startswith("conditions:{USED}")
        assert kwargs["params"]["category_ids"] == "267"


@pytest.mark.unit
class TestPriceItem:
    def test_nothing_to_search_returns_fallback(self):
        stats = price_item()
        assert stats.count == 0
        assert stats.suggested_price == 7.99

    def test_sold_comps_use_fair_tier(self):
        with patch("resale_lister.market.fetch_sold_comps", return_value=comps(5, 10, 10, 15, 1000)) as sold:
            stats = price_item(isbn="9780306406157", query="Dune")

        assert stats.source == "sold"
        assert stats.suggested_price == 10.99
        assert sold.call_args.kwargs["query"] is None

    def test_falls_through_to_active_comps(self):
        with patch("resale_lister.market.fetch_sold_comps", side_effect=EbayConfigurationError("no app id")), \
                patch("resale_lister.market.fetch_active_comps", return_value=comps(10, 20)):
            stats = price_item(query="Dune")

        assert stats.source == "active"
        assert stats.suggested_price == 14.99

    def test_all_sources_fail(self):
        with patch("resale_lister.market.fetch_sold_comps", side_effect=requests.Timeout("slow")), \
                patch("resale_lister.market.fetch_active_comps", return_value=[]):
            stats = price_item(query="Dune")

        assert stats.count == 0
        assert stats.suggested_price == 7.99
        assert stats.source == "fallback"

    def test_results_are_cached(self):
        with patch("resale_lister.market.fetch_sold_comps", return_value=comps(8, 9, 10)) as sold:
            first = price_item(query="Dune")
            second = price_item(query="  DUNE ")

        assert first is second
        assert sold.call_count == 1

    def test_cache_can_be_bypassed(self):
        with patch("resale_lister.market.fetch_sold_comps", return_value=comps(8, 9, 10)) as sold:
            price_item(query="Dune", use_cache=False)
            price_item(query="Dune", use_cache=False)

        assert sold.call_count == 2

    def test_fallback_is_not_cached(self):
        with patch("resale_lister.market.fetch_sold_comps", return_value=[]) as sold, \
                patch("resale_lister.market.fetch_active_comps", return_value=[]):
            price_item(query="Dune")
            price_item(query="Dune")

        assert sold.call_count == 2


@pytest.mark.unit
class TestBulkPrice:
    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            market.bulk_price([{"isbn": "9780306406157"}], "CHEAPEST")

    def test_flat_price(self):
        results = market.bulk_price([{"title": "Dune"}], market.STRATEGY_FLAT, BulkPricingConfig(flat=5))
        assert results[0].price == 5.99
        assert results[0].source == "FLAT"

    def test_flat_price_with_cents_rounding_and_floor(self):
        cfg = BulkPricingConfig(flat=2, floor=3.5, rounding="cents")
        results = market.bulk_price([{"title": "Dune"}], market.STRATEGY_FLAT, cfg)
        assert results[0].price == 3.5

    def test_cover_multiplier(self):
        cfg = BulkPricingConfig(multiplier=0.5)
        items = [{"title": "Dune", "cover_price": 10}, {"title": "Emma", "cover_price": "n/a"}]
        results = market.bulk_price(items, market.STRATEGY_COVER_MULTIPLIER, cfg)

        assert results[0].price == 5.99
        assert results[0].source == "COVER_MULTIPLIER"
        assert results[1].price == 7.99
        assert results[1].source == "FALLBACK"

    def test_min_of_takes_cheapest_candidate(self):
        cfg = BulkPricingConfig(multiplier=1.0, flat=12)
        with patch("resale_lister.market.fetch_active_comps", return_value=comps(20, 30)) as active:
            results = market.bulk_price([{"isbn": "9780306406157", "cover_price": 10}], market.STRATEGY_MIN_OF, cfg)

        result = results[0]
        assert result.price == 10.99
        assert result.source == "MIN_OF"
        assert result.statistics.suggested_price == 24.0
        assert active.call_args.kwargs["limit"] == 50
        assert "LH_Sold=1" in result.links["sold_comps"]
        assert "_nkw=9780306406157" in result.links["active_search"]

    def test_active_listing_errors_become_notes(self):
        with patch("resale_lister.market.fetch_active_comps", side_effect=EbayConfigurationError("no credentials")):
            results = market.bulk_price([{"title": "Dune"}, {"title": "Emma"}], market.STRATEGY_ACTIVE_LISTINGS)

        assert len(results) == 2
        assert all(r.source == "FALLBACK" for r in results)
        assert all(r.price == 7.99 for r in results)
        assert results[0].note == "Browse error: no credentials"

    def test_no_active_results_note(self):
        with patch("resale_lister.market.fetch_active_comps", return_value=[]):
            results = market.bulk_price([{"title": "Dune"}], market.STRATEGY_ACTIVE_LISTINGS)
        assert results[0].note == "No active results"


@pytest.mark.unit
class TestActiveSuggestionRounding:
    def test_active_price_ends_in_99(self):
        with patch("resale_lister.market.fetch_sold_comps", return_value=[]), \
                patch("resale_lister.market.fetch_active_comps", return_value=comps(10.00, 13.37, 20.00)):
            stats = price_item(query="Dune")

        assert stats.source == "active"
        assert stats.suggested_price == 12.99
        assert stats.median == 13.37


@pytest.mark.integration
class TestMalformedReplies:
    @pytest.fixture
    def credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "EBAY_APP_ID", "app-id")
        monkeypatch.setattr(settings, "EBAY_CLIENT_ID", "cid")
        monkeypatch.setattr(settings, "EBAY_CLIENT_SECRET", "secret")

    @pytest.mark.parametrize("body", [{"error": "invalid_client"}, {"access_token": ""}, ["tok"], None])
    def test_token_reply_without_access_token(self, credentials, body):
        session = Mock()
        session.post.return_value = make_response(body)

        with pytest.raises(EbayConfigurationError):
            market.get_app_token(session)
        assert market._token_cache["access_token"] is None

    def test_price_item_falls_back_when_every_reply_is_bad(self, credentials):
        failed = make_response(None, status_code=500)
        failed.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        session = Mock()
        session.get.return_value = failed
        session.post.return_value = make_response({"error": "invalid_client"})

        stats = price_item(isbn="9780306406157", session=session)

        assert stats.count == 0
        assert stats.suggested_price == 7.99
        assert stats.source == "fallback"

    def test_non_string_titles_are_coerced(self, credentials):
        payload = {
            "findCompletedItemsResponse": [{
                "searchResult": [{
                    "item": [{
                        "itemId": [{"id": 1}],
                        "title": [{"x": 1}],
                        "sellingStatus": [{"currentPrice": [{"__value__": "9.00"}]}],
                    }]
                }]
            }]
        }
        session = Mock()
        session.get.return_value = make_response(payload)

        stats = price_item(isbn="9780306406157", session=session)

        assert stats.count == 1
        assert stats.source == "sold"
        comp = extract_finding_comps(payload)[0]
        assert comp.title == ""
        assert comp.item_id is None

    def test_browse_title_of_wrong_type(self):
        result = extract_browse_comps({"itemSummaries": [{"title": 42, "price": {"value": "5"}}, {"title": ["Lot"], "price": {"value": "6"}}]})
        assert [c.title for c in result] == ["42", ""]
        assert is_lot_listing({"title": "Lot of 4"}) is False

    def test_list_shaped_bodies(self):
        assert extract_finding_comps([]) == []
        assert extract_browse_comps(["not", "a", "dict"]) == []
        assert extract_browse_comps({"itemSummaries": [["nested"], None]}) == []

    def test_unexpected_parse_errors_fall_through(self):
        with patch("resale_lister.market.fetch_sold_comps", side_effect=KeyError("item")), \
                patch("resale_lister.market.fetch_active_comps", side_effect=TypeError("bad shape")):
            stats = price_item(query="Dune")

        assert stats.count == 0
        assert stats.suggested_price == 7.99

    def test_bulk_price_survives_bad_token_reply(self, credentials):
        session = Mock()
        session.post.return_value = make_response({"error": "invalid_client"})

        results = market.bulk_price([{"title": "Dune"}, {"title": "Emma"}], market.STRATEGY_ACTIVE_LISTINGS, session=session)

        assert len(results) == 2
        assert all(r.source == "FALLBACK" for r in results)
        assert all(r.note.startswith("Browse error:") for r in results)

    def test_bulk_price_survives_unexpected_parse_errors(self):
        cfg = BulkPricingConfig(flat=6)
        with patch("resale_lister.market.fetch_active_comps", side_effect=TypeError("bad shape")):
            results = market.bulk_price([{"title": "Dune"}], market.STRATEGY_MIN_OF, cfg)

        assert results[0].source == "MIN_OF"
        assert results[0].price == 6.99
        assert results[0].note == "Browse error: bad shape"


@pytest.mark.unit
class TestCompsCacheExpiry:
    def test_expired_entry_is_dropped_on_lookup(self):
        stale = compute_statistics([10])
        market._comps_cache["|dune|Used"] = (stale, time.time() - 1)

        with patch("resale_lister.market.fetch_sold_comps", return_value=comps(8, 9, 10)):
            stats = price_item(query="Dune")

        assert stats is not stale
        assert market._comps_cache["|dune|Used"][0] is stats

    def test_expired_entries_are_pruned_on_insert(self):
        market._comps_cache["|old|Used"] = (compute_statistics([10]), time.time() - 1)
        market._comps_cache["|fresh|Used"] = (compute_statistics([10]), time.time() + 600)

        with patch("resale_lister.market.fetch_sold_comps", return_value=comps(8, 9, 10)):
            price_item(query="Dune")

        assert "|old|Used" not in market._comps_cache
        assert "|fresh|Used" in market._comps_cache
        assert "|dune|Used" in market._comps_cache
