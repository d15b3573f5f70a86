"""eBay listing description generator backed by a chat-completion LLM.

The generator only writes free text. Titles and prices are computed
deterministically elsewhere and are passed in as context.

Example usage:
    from resale_lister.ai import DescriptionGenerator, build_listing_prompt

    generator = DescriptionGenerator()
    prompt = build_listing_prompt(item, metadata, price=12.99)
    description = generator.generate_description(prompt)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import requests

from resale_lister.config import settings
from resale_lister.models import ItemFields, ProductMetadata

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

SYSTEM_PROMPT = """You are an expert eBay listing optimizer for books and magazines.
Write compelling, honest, SEO-friendly descriptions that help the item sell.

Guidelines:
- Highlight key selling points
- Include condition details exactly as given
- Use relevant keywords buyers search for
- Keep a professional, trustworthy tone
- Mention shipping and return policy basics
- Never invent facts: fields marked Unknown must not be guessed
- Aim for 200-300 words

Respond with JSON containing "title" and "description" fields."""


class GenerationError(Exception):
    """Raised when AI generation fails."""
    pass


def _field(value: Any) -> str:
    if value is None:
        return UNKNOWN
    if isinstance(value, (list, tuple)):
        joined = ", ".join(str(v) for v in value if v)
        return joined or UNKNOWN
    text = str(value).strip()
    return text or UNKNOWN


def build_listing_prompt(
    item: ItemFields,
    metadata: Optional[ProductMetadata] = None,
    price: Optional[float] = None,
    title: Optional[str] = None,
) -> str:
    """Render every known field into a fixed-layout prompt.

    Missing values are written literally as "Unknown"; nothing is filled in.
    """
    meta = metadata
    lines = [
        "Create an SEO-optimized eBay listing description for this item:",
        "",
        f"Listing Title: {_field(title)}",
        f"Item Type: {_field(item.item_type or (meta.type if meta else None))}",
        f"Title: {_field(item.title or (meta.title if meta else None))}",
        f"Author: {_field(item.author or (meta.authors if meta else None))}",
        f"Publisher: {_field(item.publisher or (meta.publisher if meta else None))}",
        f"Year: {_field(item.year or (meta.publication_year if meta else None))}",
        f"Condition: {_field(item.condition)}",
        f"Category: {_field(item.category or (meta.categories if meta else None))}",
        f"Genre: {_field(item.genre)}",
        f"ISBN: {_field(item.isbn or (meta.isbn13 if meta else None))}",
        f"Issue Number: {_field(item.issue_number)}",
        f"Issue Date: {_field(item.issue_date)}",
        f"Issue Title: {_field(item.issue_title)}",
        f"Included Items: {_field(item.included_items)}",
        f"Price: {_field(f'${price:.2f}' if price is not None else None)}",
    ]
    if meta and meta.description:
        lines += ["", f"Publisher Description: {meta.description[:500]}"]
    return "\n".join(lines)


class DescriptionGenerator:
    """Generate listing descriptions through an OpenAI-compatible chat API."""

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.model = model or settings.OPENAI_MODEL
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.api_url = api_url or settings.OPENAI_API_URL
        self.timeout = timeout
        self.session = session

    def _call_llm(self, prompt: str, system_prompt: str = SYSTEM_PROMPT) -> str:
        """
        Call the chat-completion endpoint and return the message text.

        Raises:
            GenerationError: If the key is missing or the call fails
        """
        if not self.api_key:
            raise GenerationError("OPENAI_API_KEY is not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": 1000,
            "temperature": 0.7,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        poster = self.session.post if self.session is not None else requests.post

        try:
            response = poster(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Text generation call failed: {e}")
            raise GenerationError(f"Failed to generate content: {e}") from e
        except ValueError as e:
            raise GenerationError(f"Unparseable generation response: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError(f"Unexpected generation response shape: {e}") from e
        if not isinstance(content, str) or not content.strip():
            raise GenerationError("Empty generation response")
        return content.strip()

    def generate_description(self, prompt: str) -> str:
        """Return description text; accepts a JSON or plain-text reply."""
        content = self._call_llm(prompt)
        text = content
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        try:
            parsed = json.loads(text)
        except ValueError:
            return content
        if isinstance(parsed, dict):
            description = parsed.get("description")
            if isinstance(description, str) and description.strip():
                return description.strip()
            raise GenerationError("Generation response has no description")
        return content
