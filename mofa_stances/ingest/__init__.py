"""
Ingestion: URL probing, CSV maintenance, and headless-browser scraping.

Modules:
    countries_csv - Header-driven CSV table for national_governments.csv
    prober - URL normalization, redirect-following probe, robots.txt check
    pool - Batched async task runner with jitter
    aggregator - Playwright page scraper writing per-country artifacts
"""
