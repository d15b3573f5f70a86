"""AI services for generating eBay listing descriptions."""

from resale_lister.ai.listing_generator import (
    DescriptionGenerator,
    GenerationError,
    build_listing_prompt,
)

__all__ = [
    "DescriptionGenerator",
    "GenerationError",
    "build_listing_prompt",
]
