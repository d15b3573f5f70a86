"""Barcode lookup and comps pricing commands."""

from __future__ import annotations

import argparse
import json
import sys

from resale_lister import market
from resale_lister.barcode import normalize
from resale_lister.config import settings
from resale_lister.metadata import resolve


def add_lookup_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument("barcode", help="Scanned or typed barcode (ISBN, UPC, EAN with add-on).")
    return parser


def run_lookup(namespace: argparse.Namespace) -> int:
    classification = normalize(namespace.barcode)
    meta = resolve(classification)
    output = {
        "kind": classification.kind.value,
        "code": classification.code,
        "addon": classification.addon,
        "metadata": meta.to_dict() if meta else None,
    }
    print(json.dumps(output, indent=2, ensure_ascii=False))
    if meta is None:
        print("No product found; enter details manually.", file=sys.stderr)
        return 1
    return 0


def add_price_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--isbn", help="ISBN-13 to search sold comps by product id.")
    group.add_argument("--query", help="Keyword query when no ISBN is available.")
    parser.add_argument(
        "--condition",
        choices=("Used", "New"),
        default="Used",
        help="Condition filter for comps (default: Used).",
    )
    return parser


def run_price(namespace: argparse.Namespace) -> int:
    if not settings.EBAY_APP_ID and not settings.EBAY_CLIENT_ID:
        print("Error: EBAY_CLIENT_ID (or EBAY_APP_ID) must be set to fetch comps.", file=sys.stderr)
        return 2
    stats = market.price_item(isbn=namespace.isbn, query=namespace.query, condition=namespace.condition)
    print(json.dumps(stats.to_dict(), indent=2))
    return 0 if stats.count else 1
