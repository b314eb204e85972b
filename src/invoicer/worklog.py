"""Worklog records parsed from CSV time-tracking exports.

Expected columns: Tags, Start, Hours, Rate, Message. ``Start`` uses the
``MM/DD/YYYY HH:MM`` format, ``Tags`` is a comma-separated list and ``Rate``
may be left empty to fall back to the worklog rate.
"""

import csv
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, Iterable

logger = logging.getLogger("invoicer.worklog")

START_FORMAT = "%m/%d/%Y %H:%M"


@dataclass
class WorklogRecord:
    start: datetime
    hours: float
    message: str = ""
    rate: float | None = None
    tags: frozenset[str] = field(default_factory=frozenset)

    @property
    def begin_date(self) -> datetime:
        return self.start

    @property
    def end_date(self) -> datetime:
        return self.start + timedelta(seconds=int(3600 * self.hours))

    def effective_rate(self, default_rate: float) -> float:
        return self.rate if self.rate is not None else default_rate

    def net(self, default_rate: float) -> float:
        return self.hours * self.effective_rate(default_rate)


def parse_tags(value: str | None) -> frozenset[str]:
    """Split a comma-separated tag field, dropping blanks."""
    if not value:
        return frozenset()
    return frozenset(t.strip() for t in value.split(",") if t.strip())


def parse_record(row: dict) -> WorklogRecord:
    """Build a WorklogRecord from one CSV row dict.

    Raises ValueError (or KeyError for missing columns) on malformed input.
    """
    rate_raw = (row.get("Rate") or "").strip()
    return WorklogRecord(
        start=datetime.strptime(row["Start"].strip(), START_FORMAT),
        hours=float(row["Hours"]),
        message=(row.get("Message") or "").strip(),
        rate=float(rate_raw) if rate_raw else None,
        tags=parse_tags(row.get("Tags")),
    )


class Worklog:
    """Ordered worklog records with running date range and tag set.

    An empty worklog reports ``datetime.max`` as begin and ``datetime.min``
    as end; the range is meaningless until a record has been added.
    """

    def __init__(self, rate: float = 100.0):
        self.begin_date = datetime.max
        self.end_date = datetime.min
        self.tags: set[str] = set()
        self.rate = rate
        self._records: list[WorklogRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    @property
    def records(self) -> list[WorklogRecord]:
        return self._records

    def is_empty(self) -> bool:
        return not self._records

    def add_record(self, record: WorklogRecord) -> None:
        self.begin_date = min(self.begin_date, record.begin_date)
        self.end_date = max(self.end_date, record.end_date)
        self.tags |= record.tags
        self._records.append(record)

    def append(self, other: "Worklog") -> None:
        for record in list(other):
            self.add_record(record)

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def from_records_with_tag(self, tag: str) -> "Worklog":
        """Return a new worklog holding only records tagged with ``tag``."""
        worklog = Worklog(rate=self.rate)
        for record in self._records:
            if tag in record.tags:
                worklog.add_record(record)
        return worklog

    def sort(self) -> None:
        self._records.sort(key=lambda r: r.start)

    def hours(self) -> float:
        return sum(r.hours for r in self._records)

    def sum(self) -> float:
        return sum(r.net(self.rate) for r in self._records)

    def sum_with_tax(self, tax_rate: float) -> float:
        return self.sum() * (1.0 + tax_rate / 100.0)

    @classmethod
    def from_records(cls, records: Iterable[WorklogRecord], rate: float = 100.0) -> "Worklog":
        worklog = cls(rate=rate)
        for record in records:
            worklog.add_record(record)
        return worklog

    @classmethod
    def from_csv(cls, stream: IO[str], source: str = "<stream>") -> "Worklog":
        """Parse a whole CSV stream. Any malformed row rejects the stream."""
        worklog = cls()
        reader = csv.DictReader(stream)
        # Row 1 is the header line
        for lineno, row in enumerate(reader, start=2):
            try:
                record = parse_record(row)
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise ValueError(f"{source}:{lineno}: malformed worklog row: {e}") from e
            worklog.add_record(record)
        logger.debug("Parsed %d records from %s", len(worklog), source)
        return worklog

    @classmethod
    def from_csv_file(cls, path: Path) -> "Worklog":
        with open(path, newline="", encoding="utf-8") as f:
            return cls.from_csv(f, source=str(path))
