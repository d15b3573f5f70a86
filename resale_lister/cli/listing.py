"""Title, single-listing and batch drafting commands."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Dict, List

from resale_lister.io import load_preferences, read_barcodes_csv, write_rows_csv
from resale_lister.listing import ListingAssembler
from resale_lister.models import ItemFields, UserTitlePreferences
from resale_lister.title_builder import DEDUPE_CONSECUTIVE, DEDUPE_GLOBAL, build_title

BATCH_FIELDNAMES = ("index", "barcode", "status", "title", "price", "description", "error")


def add_title_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument("--title", help="Book title or magazine publication name.")
    parser.add_argument("--author", help="Book author.")
    parser.add_argument("--type", dest="item_type", choices=("book", "magazine"), help="Force the item type.")
    parser.add_argument("--issue-number", help="Magazine issue number.")
    parser.add_argument("--issue-date", help="Magazine cover date, e.g. 'Jan 2024' or '2024-01'.")
    parser.add_argument("--issue-title", help="Magazine issue subtitle.")
    parser.add_argument("--year", help="Publication year.")
    parser.add_argument("--hook", dest="promotional_hook", help="Promotional hook text.")
    parser.add_argument("--included", dest="included_items", help="Included items, e.g. 'With Poster'.")
    parser.add_argument("--prefix", action="append", default=[], help="Title prefix (repeatable).")
    parser.add_argument("--suffix", action="append", default=[], help="Title suffix (repeatable).")
    parser.add_argument("--keyword", action="append", default=[], help="Keyword appended while it fits (repeatable).")
    parser.add_argument(
        "--dedupe",
        choices=(DEDUPE_CONSECUTIVE, DEDUPE_GLOBAL),
        default=DEDUPE_CONSECUTIVE,
        help="Duplicate word policy (default: consecutive).",
    )
    return parser


def run_title(namespace: argparse.Namespace) -> int:
    item = ItemFields(
        title=namespace.title,
        author=namespace.author,
        year=namespace.year,
        issue_number=namespace.issue_number,
        issue_date=namespace.issue_date,
        issue_title=namespace.issue_title,
        promotional_hook=namespace.promotional_hook,
        included_items=namespace.included_items,
        item_type=namespace.item_type,
    )
    prefs = UserTitlePreferences(
        title_prefixes=namespace.prefix,
        title_suffixes=namespace.suffix,
        title_keywords=namespace.keyword,
    )
    print(build_title(item, prefs, dedupe=namespace.dedupe))
    return 0


def add_listing_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument("barcode", help="Scanned or typed barcode.")
    parser.add_argument("--prefs", dest="prefs_path", help="JSON file with title preferences.")
    parser.add_argument("--condition", default="Used", help="Item condition (default: Used).")
    return parser


def run_listing(namespace: argparse.Namespace) -> int:
    try:
        prefs = load_preferences(namespace.prefs_path)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    assembler = ListingAssembler(condition=namespace.condition)
    draft = assembler.create_from_barcode(namespace.barcode, prefs=prefs)
    print(json.dumps(draft.to_dict(), indent=2, ensure_ascii=False))
    return 0 if draft.metadata is not None else 1


def add_batch_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument("--in", dest="input_path", default="barcodes.csv", help="CSV with one barcode per row.")
    parser.add_argument("--out", dest="output_path", default="listing_drafts.csv", help="Destination CSV.")
    parser.add_argument("--prefs", dest="prefs_path", help="JSON file with title preferences.")
    parser.add_argument("--condition", default="Used", help="Item condition (default: Used).")
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds to pause between items (default: BATCH_DELAY or 0.5).",
    )
    return parser


def run_batch(namespace: argparse.Namespace) -> int:
    try:
        prefs = load_preferences(namespace.prefs_path)
        barcodes = read_barcodes_csv(namespace.input_path)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    if not barcodes:
        print("No barcodes found in input.", file=sys.stderr)
        write_rows_csv(namespace.output_path, [], BATCH_FIELDNAMES)
        return 1

    assembler = ListingAssembler(condition=namespace.condition)
    outcomes = assembler.assemble_batch(barcodes, prefs=prefs, delay=namespace.delay)

    rows: List[Dict[str, object]] = []
    for outcome in outcomes:
        draft = outcome.listing
        rows.append({
            "index": outcome.index,
            "barcode": barcodes[outcome.index],
            "status": outcome.status,
            "title": draft.title if draft else None,
            "price": draft.price if draft else None,
            "description": draft.description if draft else None,
            "error": outcome.error,
        })
    write_rows_csv(namespace.output_path, rows, BATCH_FIELDNAMES)

    success_count = sum(1 for o in outcomes if o.ok)
    print(f"Drafted {success_count}/{len(outcomes)} listings -> {namespace.output_path}", file=sys.stderr)
    return 0 if success_count else 1
