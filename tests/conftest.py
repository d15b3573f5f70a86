"""Shared pytest fixtures for all tests."""
from __future__ import annotations

from typing import Any, Dict, Optional
from unittest.mock import Mock

import pytest

from resale_lister import market
from resale_lister.config import settings
from resale_lister.constants import ITEM_TYPE_BOOK, ITEM_TYPE_MAGAZINE
from resale_lister.models import ProductMetadata


def make_response(payload: Any = None, status_code: int = 200) -> Mock:
    """Build a mock ``requests.Response`` with a JSON body."""
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def sample_isbn() -> str:
    """Return a sample ISBN for testing."""
    return "9780306406157"


@pytest.fixture
def sample_isbn_10() -> str:
    """Return a sample ISBN-10 for testing."""
    return "0306406152"


@pytest.fixture
def mock_requests_session():
    """Return a mock requests session."""
    session = Mock()
    session.get.return_value = make_response({"items": []})
    return session


@pytest.fixture
def gbooks_volume_info() -> Dict[str, Any]:
    """Return a Google Books ``volumeInfo`` payload."""
    return {
        "title": "Test Book",
        "authors": ["Test Author", "Second Author"],
        "publisher": "Test Publisher",
        "publishedDate": "2020-01-01",
        "description": "A test book",
        "categories": ["Fiction"],
        "imageLinks": {
            "smallThumbnail": "http://example.com/small.jpg",
            "thumbnail": "http://example.com/thumb.jpg",
        },
    }


@pytest.fixture
def book_metadata(sample_isbn) -> ProductMetadata:
    return ProductMetadata(
        type=ITEM_TYPE_BOOK,
        title="Test Book",
        authors=["Test Author"],
        publisher="Test Publisher",
        publication_year="2020",
        description="A test book",
        categories=["Fiction"],
        isbn13=sample_isbn,
        barcode=sample_isbn,
        source="google_books",
    )


@pytest.fixture
def magazine_metadata() -> ProductMetadata:
    return ProductMetadata(
        type=ITEM_TYPE_MAGAZINE,
        title="TIME Magazine",
        barcode="9771234567890",
        barcode_addon="12",
        source="upcitemdb",
        inferred_month="January",
        inferred_year="2024",
        inferred_issue="12",
    )


class FakeGenerator:
    """Stand-in for :class:`DescriptionGenerator` that records prompts."""

    def __init__(self, reply: Optional[str] = "A fine copy.", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def generate_description(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch, tmp_path):
    """Isolate caches and credentials from the developer's machine."""
    monkeypatch.setenv("RESALE_LISTER_DISABLE_CACHE", "1")
    monkeypatch.setattr(settings, "CACHE_DIR", tmp_path / "cache")
    monkeypatch.setattr(settings, "FALLBACK_PRICE", 7.99)
    monkeypatch.setattr(settings, "BATCH_DELAY", 0.0)
    monkeypatch.setattr(settings, "EBAY_CLIENT_ID", None)
    monkeypatch.setattr(settings, "EBAY_CLIENT_SECRET", None)
    monkeypatch.setattr(settings, "EBAY_APP_ID", None)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    monkeypatch.setattr(settings, "GOOGLE_BOOKS_API_KEY", None)
    market.clear_comps_cache()
    market._token_cache["access_token"] = None
    market._token_cache["expires_at"] = 0.0
    yield
    market.clear_comps_cache()


# Markers for categorizing tests
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (mocked HTTP, file system)"
    )
