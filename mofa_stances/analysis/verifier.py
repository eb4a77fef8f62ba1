"""
Quote verification against scraped source text.

A quote is confirmed only by plain substring search: no fuzzy matching and
no whitespace/case/diacritic normalization. Partial matches are a hint for
human review, never a confirmation.

Statuses:
    exact_match               - whole quote found (verified)
    partial_match_first_half  - only the first half found
    partial_match_last_half   - only the second half found
    partial_match_both_halves - both halves found separately
    no_match                  - nothing found
    no_data                   - no scraped text for the country
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..logging_config import configure_logging
from ..models import CountryContent, StancePosition, TopicAnalysisResult

logger = logging.getLogger(__name__)

# A half must be strictly longer than this to count as a partial match
MIN_HALF_LENGTH = 10

EXACT_MATCH = "exact_match"
NO_MATCH = "no_match"
NO_DATA = "no_data"
PARTIAL_PREFIX = "partial_match_"


@dataclass(frozen=True)
class QuoteVerification:
    status: str
    verified: bool


def verify_quote(quote: str, text: str, min_half_length: int = MIN_HALF_LENGTH) -> QuoteVerification:
    """Classify how much of ``quote`` appears verbatim in ``text``."""
    if quote in text:
        return QuoteVerification(EXACT_MATCH, True)

    half = len(quote) // 2
    first_half = quote[:half]
    last_half = quote[half:]

    first_match = len(first_half) > min_half_length and first_half in text
    last_match = len(last_half) > min_half_length and last_half in text

    if first_match and last_match:
        return QuoteVerification(PARTIAL_PREFIX + "both_halves", False)
    if first_match:
        return QuoteVerification(PARTIAL_PREFIX + "first_half", False)
    if last_match:
        return QuoteVerification(PARTIAL_PREFIX + "last_half", False)
    return QuoteVerification(NO_MATCH, False)


def verify_position(position: StancePosition, content: Optional[CountryContent]) -> StancePosition:
    """Annotate a position in place with verification status and source info."""
    if content is None:
        position.verification_status = NO_DATA
        position.verified = False
        position.source_timestamp = ""
        position.source_url = ""
        return position

    result = verify_quote(position.exact_quote or "", content.raw_text)
    position.verification_status = result.status
    position.verified = result.verified
    position.source_timestamp = content.timestamp
    position.source_url = content.source_url
    return position


def index_contents(contents: Sequence[CountryContent]) -> Dict[str, CountryContent]:
    """Map code -> content; a duplicated code keeps the last entry."""
    return {c.code: c for c in contents}


def verify_positions(positions: List[StancePosition], contents: Sequence[CountryContent]) -> List[StancePosition]:
    by_code = index_contents(contents)
    for position in positions:
        verify_position(position, by_code.get(position.country_code))
    return positions


@dataclass
class ReverifyReport:
    path: str
    total: int = 0
    verified: int = 0
    stale: int = 0
    changed: int = 0


def reverify_topic_file(path, contents: Sequence[CountryContent], write: bool = True) -> ReverifyReport:
    """
    Recompute verification for an existing topic file.

    Positions whose recorded source_timestamp differs from the content's
    timestamp were verified against a different scrape; they are counted
    as stale and logged.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    result = TopicAnalysisResult.from_dict(data)

    by_code = index_contents(contents)
    report = ReverifyReport(path=str(path), total=len(result.countries))
    for position in result.countries:
        previous_status = position.verification_status
        previous_ts = position.source_timestamp
        content = by_code.get(position.country_code)

        if content is not None and previous_ts and previous_ts != content.timestamp:
            report.stale += 1
            logger.warning(
                "%s/%s: quote was verified against %s, content is from %s",
                result.topic, position.country_code, previous_ts, content.timestamp,
            )

        verify_position(position, content)
        if position.verified:
            report.verified += 1
        if position.verification_status != previous_status:
            report.changed += 1

    if write:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)

    return report


def main(argv: Optional[List[str]] = None) -> int:
    """Re-verify topic result files against a scrape directory."""
    from .content import load_country_contents

    configure_logging()
    parser = argparse.ArgumentParser(
        prog="mofa-verify",
        description="Recompute quote verification for topic analysis files",
    )
    parser.add_argument("topic_files", nargs="+", help="topic_*.json files to re-verify")
    parser.add_argument("--content-dir", required=True, help="Scrape directory with <CODE>.txt files")
    parser.add_argument("--dry-run", action="store_true", help="Report only, do not rewrite files")
    args = parser.parse_args(argv)

    content_dir = Path(args.content_dir)
    if not content_dir.is_dir():
        logger.error("Content directory not found: %s", content_dir)
        return 1

    contents = load_country_contents(content_dir)
    status = 0
    for topic_file in args.topic_files:
        try:
            report = reverify_topic_file(topic_file, contents, write=not args.dry_run)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Cannot re-verify %s: %s", topic_file, e)
            status = 1
            continue
        print(
            f"{report.path}: {report.verified}/{report.total} verified, "
            f"{report.changed} changed, {report.stale} stale"
        )
    return status


if __name__ == "__main__":
    sys.exit(main())
