"""
Topic analyzer: one LLM request per topic across all scraped countries.

Flow:
    1. Load scraped texts for one scrape date
    2. For each topic without an existing topic_<slug>_*.json, send all
       countries' (truncated) text in a single prompt and parse the JSON reply
    3. Verify every extracted quote against its source text, write the topic file
    4. Combine all topic files into combined_analysis_<ts>.json and latest-analysis.json

Topic files act as a cache: rerunning skips any topic whose file exists, so
a run interrupted halfway resumes where it stopped. Delete a topic file to
re-query it.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import jsonschema

from ..config.secrets import MissingAPIKeyError, get_openai_key
from ..config.settings import (
    AnalysisConfig,
    ConfigurationError,
    analysis_config_from_yaml,
    load_yaml_config,
)
from ..logging_config import configure_logging
from ..models import (
    CombinedAnalysisResult,
    CountryContent,
    StancePosition,
    TopicAnalysisResult,
    TopicDefinition,
    topic_slug,
)
from .content import latest_content_dir, load_country_contents
from .llm_client import LLMClient
from .verifier import verify_positions

logger = logging.getLogger(__name__)

TOPIC_FILE_PREFIX = "topic_"
# Failed model requests are saved under this prefix so the topic is retried next run
FAILED_TOPIC_FILE_PREFIX = "failed_topic_"
COMBINED_FILE_PREFIX = "combined_analysis_"

# Characters of raw response kept in a degraded result's dataContext
RAW_RESPONSE_PREVIEW_CHARS = 200


class AnalysisError(Exception):
    """Raised when analysis input is unusable (e.g. no scraped content)."""
    pass


def filename_timestamp(now: Optional[datetime] = None) -> str:
    """ISO 8601 UTC timestamp with ':' and '.' replaced by '-' (filename-safe)."""
    now = now or datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def build_system_prompt(topic: TopicDefinition) -> str:
    return f"""You are a diplomatic analyst specializing in identifying clear positions expressed by countries on {topic.name}. Your task is to analyze foreign ministry website content and identify SPECIFIC STANCES where countries express clear opinions on this topic ONLY.

Focus EXCLUSIVELY on finding specific stances related to {topic.name}:
{topic.description}

CRITICAL: Use EXACT quotes from the input text. Do NOT add trailing periods, punctuation, or modify the text in any way. Copy the text exactly as it appears in the source material.

Return ONLY valid JSON in this exact structure:
{{
  "countryPositions": [
    {{
      "topic": "{topic.name}",
      "countries": [
        {{ "<2 digit ISO country code>": {{
          "exact_quote": "<exact quote in original language from input conveying their opinion>",
          "summarised_stance_in_english": "<stance always in english>",
          "relevance_to_topic": <0-1 score for how relevant the quote is to {topic.name}>,
          "clarity_of_stance": <0-1 score for how clear/unambiguous the country's position is>
        }}}}
      ]
    }}
  ]
}}

Only include positions that are clearly related to {topic.name}. Be specific and factual."""


def build_user_prompt(contents: Sequence[CountryContent], max_chars: int) -> str:
    """Concatenate every country's code and text, truncated to max_chars each."""
    sections = [f"--- {c.code} ---\n{c.raw_text[:max_chars]}" for c in contents]
    return (
        f"Analyze the following foreign ministry website content from {len(contents)} countries:\n\n"
        + "\n\n".join(sections)
    )


def _source_data_timestamp(contents: Sequence[CountryContent], fallback: str) -> str:
    return contents[0].timestamp if contents else fallback


# Response envelope: {"countryPositions": [{"topic": ..., "countries": [{CODE: {...}}]}]}
RESPONSE_SCHEMA = {
    "type": "object",
    "required": ["countryPositions"],
    "properties": {
        "countryPositions": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "topic": {"type": "string"},
                    "countries": {"type": ["array", "null"]},
                },
            },
        },
    },
}

POSITION_SCHEMA = {
    "type": "object",
    "required": ["exact_quote"],
    "properties": {
        "exact_quote": {"type": "string"},
        "summarised_stance_in_english": {"type": ["string", "null"]},
        "relevance_to_topic": {"type": ["number", "string", "null"]},
        "clarity_of_stance": {"type": ["number", "string", "null"]},
    },
}

_response_validator = jsonschema.Draft7Validator(RESPONSE_SCHEMA)
_position_validator = jsonschema.Draft7Validator(POSITION_SCHEMA)


def extract_positions(parsed: Any, topic: TopicDefinition) -> Optional[List[StancePosition]]:
    """
    Pull this topic's positions out of the response envelope.

    Only the first countryPositions block is read (one topic per request).
    Entries failing POSITION_SCHEMA are dropped with a warning.

    Returns:
        The positions, or None when the envelope itself does not match
        RESPONSE_SCHEMA
    """
    error = jsonschema.exceptions.best_match(_response_validator.iter_errors(parsed))
    if error is not None:
        logger.error("%s: response does not match schema: %s", topic.name, error.message)
        return None

    positions = []
    for entry in parsed["countryPositions"][0].get("countries") or []:
        if not isinstance(entry, dict):
            logger.warning("%s: skipping non-object country entry %r", topic.name, entry)
            continue
        for code, payload in entry.items():
            if not _position_validator.is_valid(payload):
                logger.warning("%s: skipping malformed position for %s", topic.name, code)
                continue
            positions.append(StancePosition.from_payload(str(code), topic.name, payload))
    return positions


def degraded_result(
    topic: TopicDefinition,
    data_context: str,
    analysis_timestamp: str,
    source_data_timestamp: str,
) -> TopicAnalysisResult:
    """A result with no countries whose dataContext says why."""
    return TopicAnalysisResult(
        topic=topic.name,
        countries=[],
        data_context=data_context,
        analysis_timestamp=analysis_timestamp,
        source_data_timestamp=source_data_timestamp,
    )


def parse_topic_response(
    raw: str,
    topic: TopicDefinition,
    contents: Sequence[CountryContent],
    now: Optional[datetime] = None,
) -> TopicAnalysisResult:
    """
    Turn the model's raw text into a TopicAnalysisResult.

    Non-JSON or wrong-shaped output yields a degraded result (no countries, raw response
    prefix in dataContext). It is not retried.
    """
    analysis_timestamp = (now or datetime.now(timezone.utc)).isoformat()
    source_ts = _source_data_timestamp(contents, analysis_timestamp)

    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.error("Failed to parse JSON response for %s: %s", topic.name, e)
        logger.error("Raw response: %s", (raw or "")[:500])
        return degraded_result(
            topic,
            "Analysis failed - JSON parsing error. Raw response: "
            f"{(raw or '')[:RAW_RESPONSE_PREVIEW_CHARS]}...",
            analysis_timestamp,
            source_ts,
        )

    positions = extract_positions(parsed, topic)
    if positions is None:
        return degraded_result(
            topic,
            "Analysis failed - response schema error. Raw response: "
            f"{raw[:RAW_RESPONSE_PREVIEW_CHARS]}...",
            analysis_timestamp,
            source_ts,
        )
    logger.info("Parsed %s: %d positions", topic.name, len(positions))

    data_context = parsed.get("dataContext") if isinstance(parsed, dict) else None
    if not isinstance(data_context, str) or not data_context:
        scrape_date = source_ts[:10]
        data_context = (
            f"Analysis of {topic.name} based on {len(contents)} foreign ministry websites "
            f"scraped on {scrape_date}. Content represents official diplomatic positions "
            "and priorities as published on government websites."
        )

    return TopicAnalysisResult(
        topic=topic.name,
        countries=positions,
        data_context=data_context,
        analysis_timestamp=analysis_timestamp,
        source_data_timestamp=source_ts,
    )


def analyze_topic(
    client: LLMClient,
    topic: TopicDefinition,
    contents: Sequence[CountryContent],
    max_chars: int,
) -> TopicAnalysisResult:
    """Send one request for one topic and parse the reply."""
    logger.info("Sending %d countries to %s for %s", len(contents), client.model, topic.name)
    completion = client.complete_json(
        build_system_prompt(topic),
        build_user_prompt(contents, max_chars),
    )
    return parse_topic_response(completion.text, topic, contents)


def save_topic_analysis(
    result: TopicAnalysisResult,
    contents: Sequence[CountryContent],
    output_dir,
    now: Optional[datetime] = None,
    prefix: str = TOPIC_FILE_PREFIX,
) -> Path:
    """Verify quotes, then write <prefix><slug>_<timestamp>.json."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    verify_positions(result.countries, contents)
    path = output_dir / f"{prefix}{topic_slug(result.topic)}_{filename_timestamp(now)}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)

    verified = sum(1 for p in result.countries if p.verified)
    logger.info("Topic analysis saved: %s (%d/%d quotes verified)", path, verified, len(result.countries))
    return path


def slug_from_topic_filename(name: str) -> Optional[str]:
    """``topic_<slug>_<timestamp>.json`` -> ``<slug>`` (None for other names)."""
    if not name.startswith(TOPIC_FILE_PREFIX) or not name.endswith(".json"):
        return None
    stem = name[len(TOPIC_FILE_PREFIX):-len(".json")]
    if "_" not in stem:
        return None
    slug, _timestamp = stem.rsplit("_", 1)
    return slug or None


def find_existing_topic_files(output_dir) -> Dict[str, Path]:
    """
    Map slug -> existing topic file.

    When several files share a slug, the lexically last name (newest
    timestamp) wins.
    """
    output_dir = Path(output_dir)
    if not output_dir.is_dir():
        return {}

    existing: Dict[str, Path] = {}
    for path in sorted(output_dir.glob(f"{TOPIC_FILE_PREFIX}*.json")):
        slug = slug_from_topic_filename(path.name)
        if slug:
            existing[slug] = path
    return existing


def analyze_all_topics(
    client: LLMClient,
    contents: Sequence[CountryContent],
    topics: Sequence[TopicDefinition],
    output_dir,
    max_chars: int,
) -> List[Path]:
    """
    Analyze topics one at a time, skipping any that already have a file.

    A failed model request does not stop the run: the topic gets a degraded
    result written under FAILED_TOPIC_FILE_PREFIX, which the cache lookup
    ignores, so the next run asks again.

    Returns:
        Topic file paths in topic order (existing paths reused verbatim)
    """
    topic_files: List[Path] = []
    existing = find_existing_topic_files(output_dir)

    for topic in topics:
        cached = existing.get(topic.slug)
        if cached is not None:
            logger.info("Skipping topic: %s (already exists: %s)", topic.name, cached.name)
            topic_files.append(cached)
            continue

        logger.info("Analyzing topic: %s", topic.name)
        try:
            result = analyze_topic(client, topic, contents, max_chars)
        except Exception as e:
            logger.error("Model request for %s failed: %s: %s", topic.name, type(e).__name__, e)
            now = datetime.now(timezone.utc).isoformat()
            result = degraded_result(
                topic,
                f"Analysis failed - model request error: {type(e).__name__}: {e}",
                now,
                _source_data_timestamp(contents, now),
            )
            topic_files.append(save_topic_analysis(result, contents, output_dir, prefix=FAILED_TOPIC_FILE_PREFIX))
            continue

        path = save_topic_analysis(result, contents, output_dir)
        existing[topic.slug] = path
        topic_files.append(path)

    return topic_files


def combine_topic_analyses(
    topic_files: Sequence[Path],
    now: Optional[datetime] = None,
) -> CombinedAnalysisResult:
    """Read each topic file back and merge them; unreadable files are skipped."""
    country_positions = []
    for path in topic_files:
        try:
            with open(path, "r", encoding="utf-8") as f:
                topic_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read topic file %s: %s", path, e)
            continue
        country_positions.append({
            "topic": topic_data.get("topic", ""),
            "countries": topic_data.get("countries", []),
        })

    return CombinedAnalysisResult(
        country_positions=country_positions,
        data_context=(
            f"Comprehensive analysis across {len(topic_files)} topics with incremental updates "
            "support. Each topic analyzed separately and combined."
        ),
        analysis_timestamp=(now or datetime.now(timezone.utc)).isoformat(),
        topic_analysis_files=[Path(p).name for p in topic_files],
    )


def write_combined(
    combined: CombinedAnalysisResult,
    output_dir,
    latest_path: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Path:
    """Write combined_analysis_<ts>.json and, if configured, the dashboard's latest copy."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    payload = combined.to_dict()

    path = output_dir / f"{COMBINED_FILE_PREFIX}{filename_timestamp(now)}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
    logger.info("Combined analysis saved to: %s", path)

    if latest_path:
        latest = Path(latest_path)
        latest.parent.mkdir(parents=True, exist_ok=True)
        with open(latest, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        logger.info("Dashboard copy updated: %s", latest)

    return path


def run_analysis(config: AnalysisConfig, client: LLMClient) -> Path:
    """
    Full analyzer run for one scrape directory.

    Raises:
        AnalysisError: If the content directory is missing or empty
    """
    content_dir = Path(config.content_dir) if config.content_dir else latest_content_dir(config.results_root)
    if content_dir is None or not content_dir.is_dir():
        raise AnalysisError(f"No scrape directory found (content_dir={config.content_dir or config.results_root})")

    logger.info("Loading .txt files from %s", content_dir)
    contents = load_country_contents(content_dir)
    if not contents:
        raise AnalysisError(f"No country texts in {content_dir}")
    logger.info("Loaded %d country files", len(contents))

    topic_files = analyze_all_topics(
        client,
        contents,
        config.topics,
        config.results_root,
        config.max_chars_per_country,
    )
    combined = combine_topic_analyses(topic_files)
    path = write_combined(combined, config.results_root, config.latest_path)
    logger.info("Individual topic files: %d", len(topic_files))
    return path


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the topic analyzer."""
    parser = argparse.ArgumentParser(
        prog="mofa-analyze",
        description="Extract per-topic diplomatic stances from scraped ministry texts",
    )
    parser.add_argument("--content-dir", help="Scrape directory (default: newest results/<date>)")
    parser.add_argument("--results-dir", help="Where topic and combined files are written")
    parser.add_argument("--latest-path", help="Dashboard copy of the combined result")
    parser.add_argument("--model", help="Chat model name")
    parser.add_argument("--max-chars", type=int, help="Characters of text sent per country")
    parser.add_argument("--max-tokens", type=int, help="Output token cap")
    parser.add_argument("--config", help="Path to pipeline.yaml")
    args = parser.parse_args(argv)

    # Checked before any logging setup or file access
    try:
        api_key = get_openai_key()
    except MissingAPIKeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging()
    try:
        config = analysis_config_from_yaml(
            load_yaml_config(args.config),
            content_dir=args.content_dir,
            results_root=args.results_dir,
            latest_path=args.latest_path,
            model=args.model,
            max_chars_per_country=args.max_chars,
            max_tokens=args.max_tokens,
        )
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    client = LLMClient(
        api_key=api_key,
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )
    try:
        run_analysis(config, client)
    except AnalysisError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
