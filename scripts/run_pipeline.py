#!/usr/bin/env python3
"""
Run the MOFA pipeline stages in order.

Stages:
1. Probe ministry URLs (http_response_code)
2. Check robots.txt
3. Retry 403/TIMEOUT rows with browser headers
4. Scrape homepages with Playwright
5. Analyze topics with the LLM

Usage:
    # Everything
    python scripts/run_pipeline.py

    # Re-scrape and re-analyze only, 10 pages at a time
    python scripts/run_pipeline.py --skip-probe --concurrency 10

    # Analysis only, against a specific scrape
    python scripts/run_pipeline.py --only analyze --content-dir results/2026-10-19
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mofa_stances.analysis import analyzer
from mofa_stances.ingest import aggregator, prober
from mofa_stances.logging_config import configure_logging

logger = logging.getLogger(__name__)

STAGES = ["probe", "robots", "retry", "scrape", "analyze"]
PROBE_STAGES = {"probe", "robots", "retry"}


@dataclass
class StageResult:
    """Result of a pipeline stage."""
    status: str   # "OK" | "FAIL" | "CRASH"
    returncode: int


def run_stage(entry: Callable[[List[str]], int], argv: List[str], label: str) -> StageResult:
    """Call a stage's main(argv); a non-zero return is FAIL, an exception is CRASH."""
    logger.info(f"Running {label}: {' '.join(argv) or '(defaults)'}")
    try:
        rc = entry(argv)
    except SystemExit as e:
        rc = e.code if isinstance(e.code, int) else 1
    except Exception as e:
        logger.error(f"[CRASH] {label} raised {type(e).__name__}: {e}")
        return StageResult("CRASH", -1)

    if rc == 0:
        logger.info(f"[OK] {label} completed successfully")
        return StageResult("OK", 0)
    logger.error(f"[FAIL] {label} exited with code {rc}")
    return StageResult("FAIL", rc)


def build_stage_argv(stage: str, args: argparse.Namespace) -> List[str]:
    """Translate pipeline flags into one stage's argv."""
    argv: List[str] = []
    if stage in PROBE_STAGES:
        if args.csv:
            argv += ["--csv", args.csv]
        if args.config:
            argv += ["--config", args.config]
    elif stage == "scrape":
        if args.csv:
            argv += ["--csv", args.csv]
        if args.config:
            argv += ["--config", args.config]
        if args.concurrency is not None:
            argv += ["--concurrency", str(args.concurrency)]
    elif stage == "analyze":
        if args.content_dir:
            argv += ["--content-dir", args.content_dir]
        if args.config:
            argv += ["--config", args.config]
    return argv


def select_stages(args: argparse.Namespace) -> List[str]:
    if args.only:
        return [args.only]
    stages = list(STAGES)
    if args.skip_probe:
        stages = [s for s in stages if s not in PROBE_STAGES]
    if args.skip_scrape:
        stages.remove("scrape")
    return stages


ENTRY_POINTS = {
    "probe": prober.main,
    "robots": prober.robots_main,
    "retry": prober.retry_main,
    "scrape": aggregator.main,
    "analyze": analyzer.main,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the MOFA stance pipeline")
    parser.add_argument('--only', choices=STAGES, help="Run a single stage")
    parser.add_argument('--skip-probe', action='store_true', help="Skip probe, robots and retry stages")
    parser.add_argument('--skip-scrape', action='store_true', help="Analyze the newest existing scrape")
    parser.add_argument('--csv', help="Path to national_governments.csv")
    parser.add_argument('--config', help="Path to pipeline.yaml")
    parser.add_argument('--concurrency', type=int, help="Pages scraped concurrently")
    parser.add_argument('--content-dir', help="Scrape directory for the analyze stage")
    args = parser.parse_args(argv)

    configure_logging()
    for stage in select_stages(args):
        result = run_stage(ENTRY_POINTS[stage], build_stage_argv(stage, args), stage)
        if result.status != "OK":
            logger.error(f"Pipeline stopped at {stage}")
            return 1

    logger.info("Pipeline complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
