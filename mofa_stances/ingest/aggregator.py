"""Playwright-based aggregator for foreign ministry homepages.

Renders each ministry homepage in headless Chromium, strips script/style
nodes, and saves the visible text (plus optional HTML and a metadata
record) under results/<YYYY-MM-DD>/<CODE>.{txt,html,json}.
"""

import asyncio
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from ..config.settings import ConfigurationError, ScrapeConfig, scrape_config_from_args
from ..logging_config import configure_logging
from ..models import CountryRecord, ScrapeMetadata
from .countries_csv import load_country_records, select_scrape_targets
from .pool import BatchRunner

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Upgrade-Insecure-Requests": "1",
}

VIEWPORT = {"width": 1280, "height": 720}

# Runs inside the page: drop script/style, collapse whitespace in body text
EXTRACT_TEXT_JS = """
() => {
    document.querySelectorAll('script, style').forEach(el => el.remove());
    if (!document.body) {
        return '';
    }
    return document.body.innerText.replace(/\\s+/g, ' ').trim();
}
"""


def results_dir_for(results_root: str, now: Optional[datetime] = None) -> Path:
    """Dated results directory, created if needed."""
    now = now or datetime.now(timezone.utc)
    path = Path(results_root) / now.strftime("%Y-%m-%d")
    path.mkdir(parents=True, exist_ok=True)
    return path


async def extract_page_text(page) -> str:
    """Visible body text with scripts/styles removed and whitespace collapsed."""
    text = await page.evaluate(EXTRACT_TEXT_JS)
    return text or ""


def write_artifacts(
    results_dir: Path,
    metadata: ScrapeMetadata,
    text: str,
    html: Optional[str] = None,
) -> None:
    """Write <code>.txt, optional <code>.html and <code>.json."""
    code = metadata.code
    (results_dir / f"{code}.txt").write_text(text, encoding="utf-8")
    if html is not None:
        (results_dir / f"{code}.html").write_text(html, encoding="utf-8")
    with open(results_dir / f"{code}.json", "w", encoding="utf-8") as f:
        json.dump(metadata.to_dict(), f, indent=2, ensure_ascii=False)


async def scrape_country(
    browser,
    record: CountryRecord,
    config: ScrapeConfig,
    results_dir: Path,
) -> ScrapeMetadata:
    """
    Scrape one ministry homepage and persist its artifacts.

    Page failures are recorded (success=False, error text written into the
    .txt artifact) rather than raised.
    """
    started = time.monotonic()
    timestamp = datetime.now(timezone.utc).isoformat()
    text = ""
    html = None
    error = None

    logger.info("Processing %s (%s): %s", record.country, record.code, record.ministry_url)
    page = None
    try:
        page = await browser.new_page(
            user_agent=USER_AGENT,
            extra_http_headers=EXTRA_HEADERS,
            viewport=VIEWPORT,
        )
        await page.goto(record.ministry_url, wait_until="networkidle", timeout=config.timeout_ms)

        if config.dynamic_wait_ms > 0:
            await page.wait_for_timeout(config.dynamic_wait_ms)

        if config.save_html:
            html = await page.content()
        text = await extract_page_text(page)
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        logger.warning("Failed %s (%s): %s", record.country, record.code, error)
    finally:
        if page is not None:
            try:
                await page.close()
            except Exception as close_error:
                logger.debug("Closing page for %s failed: %s", record.code, close_error)

    elapsed_ms = int((time.monotonic() - started) * 1000)
    if error is not None:
        text = f"Error: {error}"
        html = None

    metadata = ScrapeMetadata(
        country=record.country,
        code=record.code,
        url=record.ministry_url,
        timestamp=timestamp,
        success=error is None,
        error=error,
        content_length=0 if error is not None else len(text),
        processing_time_ms=elapsed_ms,
    )
    await asyncio.to_thread(write_artifacts, results_dir, metadata, text, html)
    if error is None:
        logger.info("Saved %s.txt (%d chars, %d ms)", record.code, len(text), elapsed_ms)
    return metadata


async def aggregate(
    records: Sequence[CountryRecord],
    config: ScrapeConfig,
    browser,
    results_dir: Path,
    runner: Optional[BatchRunner] = None,
) -> List[ScrapeMetadata]:
    """Scrape every record through a BatchRunner sharing one browser."""
    runner = runner or BatchRunner(
        batch_size=config.concurrency,
        max_jitter_seconds=config.request_delay_ms / 1000.0,
    )

    async def worker(record: CountryRecord) -> ScrapeMetadata:
        return await scrape_country(browser, record, config, results_dir)

    outcomes = await runner.run(list(records), worker)

    results: List[ScrapeMetadata] = []
    for record, outcome in zip(records, outcomes):
        if isinstance(outcome, BaseException):
            # Artifact writing itself failed; keep the run going
            results.append(ScrapeMetadata(
                country=record.country,
                code=record.code,
                url=record.ministry_url,
                timestamp=datetime.now(timezone.utc).isoformat(),
                success=False,
                error=f"{type(outcome).__name__}: {outcome}",
            ))
        else:
            results.append(outcome)

    succeeded = sum(1 for r in results if r.success)
    logger.info("Scraped %d/%d countries successfully", succeeded, len(results))
    return results


async def run_aggregation(config: ScrapeConfig) -> List[ScrapeMetadata]:
    """Load targets from the CSV and scrape them with one shared browser."""
    from playwright.async_api import async_playwright

    records = select_scrape_targets(load_country_records(config.csv_path))
    logger.info("Found %d working MOFA URLs", len(records))

    results_dir = results_dir_for(config.results_root)
    logger.info("Results will be saved to: %s", results_dir)

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=config.headless)
        try:
            return await aggregate(records, config, browser, results_dir)
        finally:
            await browser.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point: ``mofa-aggregate [concurrency N] [timeout MS] [help]``."""
    configure_logging()
    argv = sys.argv[1:] if argv is None else argv
    try:
        config = scrape_config_from_args(argv)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    logger.info(
        "Starting MOFA scraper (concurrency=%d, timeout=%dms, delay<=%dms)",
        config.concurrency, config.timeout_ms, config.request_delay_ms,
    )
    try:
        results = asyncio.run(run_aggregation(config))
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    failed = [r.code for r in results if not r.success]
    if failed:
        logger.info("Failed countries: %s", ", ".join(failed))
    return 0


if __name__ == "__main__":
    sys.exit(main())
