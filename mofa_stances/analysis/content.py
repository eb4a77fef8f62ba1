"""Load scraped per-country texts (and their metadata) from a results directory."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..models import CountryContent

logger = logging.getLogger(__name__)


def latest_content_dir(results_root) -> Optional[Path]:
    """Newest YYYY-MM-DD subdirectory under results_root, or None."""
    root = Path(results_root)
    if not root.is_dir():
        return None
    dated = []
    for entry in root.iterdir():
        if not entry.is_dir():
            continue
        try:
            datetime.strptime(entry.name, "%Y-%m-%d")
        except ValueError:
            continue
        dated.append(entry)
    if not dated:
        return None
    return sorted(dated, key=lambda p: p.name)[-1]


def load_country_contents(content_dir, include_failed: bool = False) -> List[CountryContent]:
    """
    Read every <CODE>.txt in content_dir.

    Timestamp and URL come from the matching <CODE>.json when present and
    parseable. Scrapes whose metadata says ``success: false`` hold an error
    message instead of page text and are skipped unless include_failed.
    """
    content_dir = Path(content_dir)
    contents = []

    for txt_path in sorted(content_dir.glob("*.txt")):
        code = txt_path.stem
        timestamp = datetime.now(timezone.utc).isoformat()
        url = ""

        meta_path = content_dir / f"{code}.json"
        if meta_path.exists():
            try:
                with open(meta_path, "r", encoding="utf-8") as f:
                    metadata = json.load(f)
                timestamp = metadata.get("timestamp") or timestamp
                url = metadata.get("url") or ""
                if metadata.get("success") is False and not include_failed:
                    logger.info("Skipping %s: scrape failed (%s)", code, metadata.get("error", "unknown error"))
                    continue
            except (json.JSONDecodeError, OSError, AttributeError) as e:
                logger.warning("Failed to parse metadata for %s: %s", code, e)

        contents.append(CountryContent(
            code=code,
            raw_text=txt_path.read_text(encoding="utf-8"),
            timestamp=timestamp,
            source_url=url,
        ))

    return contents
