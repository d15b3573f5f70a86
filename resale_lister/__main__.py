"""Entrypoint for ``python -m resale_lister`` commands."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from resale_lister.cli import listing, scan
from resale_lister.config import settings


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="resale_lister")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    lookup_parser = subparsers.add_parser("lookup", help="Classify a barcode and resolve product metadata.")
    scan.add_lookup_arguments(lookup_parser)
    lookup_parser.set_defaults(handler=scan.run_lookup)

    price_parser = subparsers.add_parser("price", help="Price an item from eBay comps.")
    scan.add_price_arguments(price_parser)
    price_parser.set_defaults(handler=scan.run_price)

    title_parser = subparsers.add_parser("title", help="Build a listing title from fields.")
    listing.add_title_arguments(title_parser)
    title_parser.set_defaults(handler=listing.run_title)

    listing_parser = subparsers.add_parser("listing", help="Draft a full listing for a barcode.")
    listing.add_listing_arguments(listing_parser)
    listing_parser.set_defaults(handler=listing.run_listing)

    batch_parser = subparsers.add_parser("batch", help="Draft listings for every barcode in a CSV file.")
    listing.add_batch_arguments(batch_parser)
    batch_parser.set_defaults(handler=listing.run_batch)

    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 1

    _configure_logging(args.verbose)
    return handler(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
