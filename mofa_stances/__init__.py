"""
MOFA stances: probe, scrape and analyze foreign ministry homepages.

Subpackages:
    config - Pipeline settings and API key lookup
    ingest - URL prober, countries CSV, async batch runner, page aggregator
    analysis - Topic analyzer, LLM client, quote verifier
"""

__version__ = "0.1.0"
