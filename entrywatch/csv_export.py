from __future__ import annotations

import contextlib
import csv
import os
import tempfile
from typing import IO

from entrywatch.domain import AggregatedResult

CSV_HEADER = ("Date", "ID", "Name", "State", "City", "Address", "PostalCode", "Phone", "RawJSON")


def export_to_csv(result: AggregatedResult, path: str) -> int:
    """Write one row per location, including the raw JSON. Returns the row count."""
    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write: readers never see a half-written export.
    tf = tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", newline="", dir=folder, suffix=".tmp")
    try:
        with tf:
            _write_rows(tf, result)
        os.replace(tf.name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tf.name)
        raise
    return len(result.locations)


def _write_rows(f: IO[str], result: AggregatedResult) -> None:
    writer = csv.writer(f)
    writer.writerow(CSV_HEADER)
    for item in result.locations:
        loc = item.location
        writer.writerow(
            [
                item.date.isoformat(),
                str(loc.id),
                loc.name,
                loc.state,
                loc.city,
                loc.address,
                loc.postal_code,
                loc.phone_number or "N/A",
                loc.raw,
            ]
        )
