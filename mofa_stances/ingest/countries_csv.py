"""
Header-driven access to national_governments.csv.

Columns are located by name, unknown columns are carried through untouched,
and missing columns are appended on demand. Quoted fields containing commas
round-trip correctly (RFC 4180 via the csv module).
"""

import csv
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from ..config.settings import ConfigurationError
from ..models import CountryRecord

logger = logging.getLogger(__name__)

COUNTRY_COLUMN = "country"
CODE_COLUMN = "code"
URL_COLUMN = "foreign_affairs_ministry_url"
LEGACY_DOMAIN_COLUMN = "foreign_affairs_ministry_domain"
LEGACY_URL_WORKING_COLUMN = "url_working"
STATUS_COLUMN = "http_response_code"
ROBOTS_COLUMN = "robots_txt"


class CountryTable:
    """In-memory copy of the countries CSV, read and written wholesale."""

    def __init__(self, fieldnames: List[str], rows: List[Dict[str, str]], path: Optional[Path] = None):
        self.fieldnames = list(fieldnames)
        self.rows = rows
        self.path = path

    @classmethod
    def load(cls, path) -> "CountryTable":
        """
        Read a CSV file.

        Raises:
            ConfigurationError: If the file is missing or has no header
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"CSV file not found: {path}")

        with open(path, "r", encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames:
                raise ConfigurationError(f"CSV file is empty: {path}")
            fieldnames = [name.strip() for name in reader.fieldnames]
            rows = []
            for raw in reader:
                # Blank lines come through as all-empty rows
                values = [(v or "") for v in raw.values() if not isinstance(v, list)]
                if not any(v.strip() for v in values):
                    continue
                row = {}
                for original, name in zip(reader.fieldnames, fieldnames):
                    row[name] = (raw.get(original) or "").strip()
                rows.append(row)

        return cls(fieldnames, rows, path)

    def has_column(self, name: str) -> bool:
        return name in self.fieldnames

    def require_column(self, *candidates: str) -> str:
        """
        Return the first candidate column present in the header.

        Raises:
            ConfigurationError: If none of the candidates exists
        """
        for name in candidates:
            if name in self.fieldnames:
                return name
        raise ConfigurationError(f"{' or '.join(candidates)} column not found in {self.path}")

    def ensure_column(self, name: str) -> None:
        """Append an empty column if absent."""
        if name not in self.fieldnames:
            self.fieldnames.append(name)
            for row in self.rows:
                row.setdefault(name, "")

    def rename_column(self, old: str, new: str) -> None:
        if old not in self.fieldnames:
            return
        self.fieldnames[self.fieldnames.index(old)] = new
        for row in self.rows:
            row[new] = row.pop(old, "")

    def drop_column(self, name: str) -> None:
        if name not in self.fieldnames:
            return
        self.fieldnames.remove(name)
        for row in self.rows:
            row.pop(name, None)

    def save(self, path=None) -> Path:
        """Write the table back (atomically via a temp file)."""
        target = Path(path or self.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=self.fieldnames, extrasaction="ignore", lineterminator="\n")
            writer.writeheader()
            for row in self.rows:
                writer.writerow({name: row.get(name, "") for name in self.fieldnames})
        os.replace(tmp, target)
        return target


def row_to_record(row: Dict[str, str]) -> CountryRecord:
    url = row.get(URL_COLUMN) or row.get(LEGACY_DOMAIN_COLUMN, "")
    return CountryRecord(
        country=row.get(COUNTRY_COLUMN, ""),
        code=row.get(CODE_COLUMN, ""),
        ministry_url=url,
        http_status=row.get(STATUS_COLUMN, ""),
        robots_status=row.get(ROBOTS_COLUMN, ""),
    )


def load_country_records(path) -> List[CountryRecord]:
    """Load every row as a CountryRecord (missing columns become empty strings)."""
    table = CountryTable.load(path)
    table.require_column(CODE_COLUMN)
    return [row_to_record(row) for row in table.rows]


def select_scrape_targets(records: List[CountryRecord]) -> List[CountryRecord]:
    """Rows whose prober status is 200 and whose URL is absolute."""
    targets = [
        r for r in records
        if r.code and r.http_status == "200" and r.ministry_url.startswith("http")
    ]

    seen = set()
    for r in targets:
        if r.code in seen:
            logger.warning("Duplicate country code %s in CSV; later row overwrites earlier output", r.code)
        seen.add(r.code)
    return targets
