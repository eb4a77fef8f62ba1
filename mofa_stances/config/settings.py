"""
Pipeline configuration.

Every entry point builds an explicit config object here (CLI args >
environment > config/pipeline.yaml > built-in defaults) and passes it down.
Library code never reads process state itself.
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from ..models import TopicDefinition

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/pipeline.yaml"

DEFAULT_CSV_PATH = "data/national_governments.csv"
DEFAULT_RESULTS_ROOT = "results"
DEFAULT_LATEST_PATH = "data/latest-analysis.json"

# Aggregator defaults
DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_REQUEST_DELAY_MS = 5000
DEFAULT_DYNAMIC_WAIT_MS = 0

# Analyzer defaults
DEFAULT_MODEL = "gpt-4o"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 10_000
DEFAULT_MAX_CHARS_PER_COUNTRY = 40_000

# Prober defaults
DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_REDIRECTS = 5


class ConfigurationError(Exception):
    """Fatal configuration problem (missing column, bad config file, ...)."""
    pass


@dataclass(frozen=True)
class ScrapeConfig:
    """Settings for the Page Aggregator."""
    csv_path: str = DEFAULT_CSV_PATH
    results_root: str = DEFAULT_RESULTS_ROOT
    concurrency: int = DEFAULT_CONCURRENCY
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    request_delay_ms: int = DEFAULT_REQUEST_DELAY_MS
    dynamic_wait_ms: int = DEFAULT_DYNAMIC_WAIT_MS
    save_html: bool = True
    headless: bool = True


@dataclass(frozen=True)
class ProbeConfig:
    """Settings for the URL prober scripts."""
    csv_path: str = DEFAULT_CSV_PATH
    timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    max_redirects: int = DEFAULT_MAX_REDIRECTS


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for the Topic Analyzer."""
    content_dir: str = ""
    results_root: str = DEFAULT_RESULTS_ROOT
    latest_path: str = DEFAULT_LATEST_PATH
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    max_chars_per_country: int = DEFAULT_MAX_CHARS_PER_COUNTRY
    topics: Tuple[TopicDefinition, ...] = field(default_factory=tuple)


def load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load config/pipeline.yaml.

    A missing file yields an empty dict. A file that exists but cannot be
    parsed is a ConfigurationError.
    """
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        if path:
            raise ConfigurationError(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at top level")
    return data


def _env_int(environ: Mapping[str, str], name: str) -> Optional[int]:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


# Bare keyword tokens accepted by the aggregator (``concurrency 10``)
_BARE_KEYWORDS = {
    "concurrency": "--concurrency",
    "timeout": "--timeout",
    "delay": "--delay",
    "help": "--help",
}


def normalize_cli_tokens(argv: Sequence[str]) -> List[str]:
    """Rewrite bare keywords (``concurrency 10``) into ``--concurrency 10``."""
    return [_BARE_KEYWORDS.get(token, token) for token in argv]


def build_scrape_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mofa-aggregate",
        description="Scrape foreign ministry homepages with a headless browser.",
        epilog=(
            "Bare keywords work too: 'mofa-aggregate concurrency 10 timeout 20000'. "
            "Environment: MAX_CONCURRENCY, REQUEST_DELAY, TIMEOUT."
        ),
    )
    parser.add_argument("--concurrency", type=int, help="Pages scraped concurrently per batch")
    parser.add_argument("--timeout", type=int, help="Navigation timeout in milliseconds")
    parser.add_argument("--delay", type=int, help="Maximum random start delay per task (ms)")
    parser.add_argument("--wait", type=int, help="Extra wait for dynamic content (ms)")
    parser.add_argument("--csv", help="Path to national_governments.csv")
    parser.add_argument("--results-dir", help="Root directory for dated scrape results")
    parser.add_argument("--no-html", action="store_true", help="Do not save rendered HTML")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--config", help="Path to pipeline.yaml")
    return parser


def scrape_config_from_args(
    argv: Sequence[str],
    environ: Optional[Mapping[str, str]] = None,
) -> ScrapeConfig:
    """
    Build ScrapeConfig from argv tokens and environment.

    Unrecognized arguments are ignored. ``help`` prints usage and exits 0.
    """
    env = os.environ if environ is None else environ
    parser = build_scrape_parser()
    args, unknown = parser.parse_known_args(normalize_cli_tokens(argv))
    if unknown:
        logger.debug("Ignoring unrecognized arguments: %s", unknown)

    yaml_cfg = load_yaml_config(args.config).get("scrape", {}) or {}
    config = ScrapeConfig(
        csv_path=yaml_cfg.get("csv_path", DEFAULT_CSV_PATH),
        results_root=yaml_cfg.get("results_root", DEFAULT_RESULTS_ROOT),
        concurrency=int(yaml_cfg.get("concurrency", DEFAULT_CONCURRENCY)),
        timeout_ms=int(yaml_cfg.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
        request_delay_ms=int(yaml_cfg.get("request_delay_ms", DEFAULT_REQUEST_DELAY_MS)),
        dynamic_wait_ms=int(yaml_cfg.get("dynamic_wait_ms", DEFAULT_DYNAMIC_WAIT_MS)),
        save_html=bool(yaml_cfg.get("save_html", True)),
    )

    overrides: Dict[str, Any] = {}
    env_values = {
        "concurrency": _env_int(env, "MAX_CONCURRENCY"),
        "request_delay_ms": _env_int(env, "REQUEST_DELAY"),
        "timeout_ms": _env_int(env, "TIMEOUT"),
    }
    overrides.update({k: v for k, v in env_values.items() if v is not None})

    cli_values = {
        "concurrency": args.concurrency,
        "timeout_ms": args.timeout,
        "request_delay_ms": args.delay,
        "dynamic_wait_ms": args.wait,
        "csv_path": args.csv,
        "results_root": args.results_dir,
    }
    overrides.update({k: v for k, v in cli_values.items() if v is not None})
    if args.no_html:
        overrides["save_html"] = False
    if args.headed:
        overrides["headless"] = False

    config = replace(config, **overrides)
    if config.concurrency < 1:
        raise ConfigurationError(f"concurrency must be >= 1, got {config.concurrency}")
    if config.timeout_ms < 1:
        raise ConfigurationError(f"timeout must be >= 1 ms, got {config.timeout_ms}")
    return config


def probe_config_from_yaml(yaml_cfg: Dict[str, Any], csv_path: Optional[str] = None) -> ProbeConfig:
    section = yaml_cfg.get("probe", {}) or {}
    return ProbeConfig(
        csv_path=csv_path or section.get("csv_path", DEFAULT_CSV_PATH),
        timeout_seconds=float(section.get("timeout_seconds", DEFAULT_PROBE_TIMEOUT_SECONDS)),
        max_redirects=int(section.get("max_redirects", DEFAULT_MAX_REDIRECTS)),
    )


def parse_topics(raw_topics: Any) -> Tuple[TopicDefinition, ...]:
    """
    Parse the ``topics`` list from pipeline.yaml.

    Raises:
        ConfigurationError: If an entry lacks a name
    """
    topics = []
    for i, entry in enumerate(raw_topics or []):
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigurationError(f"topics[{i}] must be a mapping with a 'name'")
        topics.append(TopicDefinition(name=str(entry["name"]), description=str(entry.get("description", ""))))

    seen: Dict[str, str] = {}
    for topic in topics:
        if topic.slug in seen:
            logger.warning(
                "Topics %r and %r share slug %r; they will share one cached result file",
                seen[topic.slug], topic.name, topic.slug,
            )
        else:
            seen[topic.slug] = topic.name
    return tuple(topics)


def analysis_config_from_yaml(yaml_cfg: Dict[str, Any], **overrides: Any) -> AnalysisConfig:
    """Build AnalysisConfig from the ``analysis`` section plus explicit overrides."""
    from ..analysis.topics import DEFAULT_TOPICS

    section = yaml_cfg.get("analysis", {}) or {}
    topics = parse_topics(section["topics"]) if section.get("topics") else DEFAULT_TOPICS
    config = AnalysisConfig(
        content_dir=section.get("content_dir", ""),
        results_root=section.get("results_root", DEFAULT_RESULTS_ROOT),
        latest_path=section.get("latest_path", DEFAULT_LATEST_PATH),
        model=section.get("model", DEFAULT_MODEL),
        temperature=float(section.get("temperature", DEFAULT_TEMPERATURE)),
        max_tokens=int(section.get("max_tokens", DEFAULT_MAX_TOKENS)),
        max_chars_per_country=int(section.get("max_chars_per_country", DEFAULT_MAX_CHARS_PER_COUNTRY)),
        topics=topics,
    )
    return replace(config, **{k: v for k, v in overrides.items() if v is not None})
