"""IO helpers for the command line tools."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from resale_lister.models import UserTitlePreferences

HEADER_NAMES = {"barcode", "isbn", "upc", "code"}


def read_barcodes_csv(path: str) -> List[str]:
    """Load barcodes from the first column of ``path``, skipping an optional header."""
    file_path = Path(path)
    barcodes: List[str] = []
    if not file_path.exists():
        raise FileNotFoundError(f"Input file not found: {file_path}")

    with file_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.reader(handle)
        is_header = True
        for row in reader:
            if not row:
                continue
            value = row[0].strip()
            if not value:
                continue
            if is_header:
                is_header = False
                if value.lower() in HEADER_NAMES:
                    continue
            barcodes.append(value)

    return barcodes


def write_rows_csv(path: str, rows: List[Dict[str, object]], fieldnames: Iterable[str]) -> None:
    """Persist rows to ``path`` as CSV with the provided column order."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with file_path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(fieldnames), extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def load_preferences(path: Optional[str]) -> Optional[UserTitlePreferences]:
    """Read title preferences from a JSON file (keys as in account settings)."""
    if not path:
        return None
    with Path(path).open("r", encoding="utf-8") as handle:
        data: Any = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Preferences file must contain a JSON object: {path}")
    return UserTitlePreferences.from_dict(data)
