"""Frequency aggregator - how often each unaccounted path recurs across images."""
import csv
import logging
from collections import Counter
from typing import Iterable

from .models import DiffRecord
from .store import DiffStore

_LOG = logging.getLogger(__name__)

CSV_HEADER = ("binary", "count")


def aggregate(records: Iterable[DiffRecord]) -> list[tuple[str, int]]:
    """(path, count) rows, most frequent first, ties by path."""
    counts = Counter()
    for record in records:
        counts.update(record.elf_names)
    return sorted(counts.items(), key=lambda row: (-row[1], row[0]))


def aggregate_directory(output_dir: str) -> list[tuple[str, int]]:
    return aggregate(DiffStore(output_dir).iter_records())


def export_csv(rows: Iterable[tuple[str, int]], output_path: str) -> int:
    written = 0
    with open(output_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for name, count in rows:
            writer.writerow([name, count])
            written += 1
    _LOG.info("wrote %d rows to %s", written, output_path)
    return written
