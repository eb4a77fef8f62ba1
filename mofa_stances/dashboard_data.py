"""
Lookup logic behind the dashboard map.

Kept free of Streamlit so colors, tooltips and the stance threshold can be
tested directly.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
import requests

from .ingest.countries_csv import CountryTable, row_to_record
from .models import CountryRecord

logger = logging.getLogger(__name__)

# Both scores must reach this for a stance to be shown on a topic map
STANCE_THRESHOLD = 0.8

NO_DATA_COLOR = "#E4E5E9"
STANCE_COLOR = "#1B5E20"

STATUS_VIEWS = {
    "website": "Website",
    "robots": "Robots.txt",
}


@dataclass(frozen=True)
class MapCell:
    color: str
    tooltip: str
    category: str


def status_style(country: str, code: str, label: str) -> MapCell:
    """Color and tooltip for a connectivity/robots status string."""
    if code == "200":
        return MapCell("#424242", f"{country} - {label} Available ({code})", "Available")
    if code in ("301", "302"):
        return MapCell("#616161", f"{country} - {label} Redirect ({code})", "Redirect")
    if code == "403":
        return MapCell("#9E9E9E", f"{country} - {label} Blocked ({code}) - May have bot protection", "Blocked")
    if code == "404":
        return MapCell("#BDBDBD", f"{country} - {label} Not Found ({code})", "Not Found")
    if code.startswith("ERROR_"):
        return MapCell("#BDBDBD", f"{country} - {label} Error ({code})", "Error")
    if code == "TIMEOUT":
        return MapCell("#757575", f"{country} - {label} Timeout", "Timeout")
    if code:
        return MapCell("#757575", f"{country} - {label} HTTP {code}", "Other")
    return MapCell("#757575", f"{country} - {label} Status Unknown", "Unknown")


def positions_by_topic(analysis: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Flatten countryPositions into {topic: {code: payload}} (first entry per code wins)."""
    index: Dict[str, Dict[str, Dict[str, Any]]] = {}
    if not analysis:
        return index
    for block in analysis.get("countryPositions", []) or []:
        topic = block.get("topic", "")
        per_topic = index.setdefault(topic, {})
        for entry in block.get("countries", []) or []:
            if not isinstance(entry, dict):
                continue
            for code, payload in entry.items():
                if isinstance(payload, dict) and code not in per_topic:
                    per_topic[code] = payload
    return index


def is_high_quality(payload: Dict[str, Any], threshold: float = STANCE_THRESHOLD) -> bool:
    try:
        relevance = float(payload.get("relevance_to_topic", 0) or 0)
        clarity = float(payload.get("clarity_of_stance", 0) or 0)
    except (TypeError, ValueError):
        return False
    return relevance >= threshold and clarity >= threshold


def topic_style(country: str, payload: Optional[Dict[str, Any]]) -> MapCell:
    """Color and tooltip for a country on a topic view."""
    if payload is None:
        return MapCell(NO_DATA_COLOR, f"{country} - No position found on this topic", "No position")
    if not is_high_quality(payload):
        return MapCell(NO_DATA_COLOR, f"{country} - No high-quality position found on this topic", "Low quality")
    stance = payload.get("summarised_stance_in_english", "")
    quote = payload.get("exact_quote", "")
    return MapCell(STANCE_COLOR, f"{country}<br>Stance: {stance}<br>Quote: \"{quote}\"", "Clear stance")


def build_map_frame(
    records: Sequence[CountryRecord],
    view: str,
    analysis: Optional[Dict[str, Any]] = None,
) -> pd.DataFrame:
    """
    One row per country with color/tooltip/category for the selected view.

    ``view`` is "website", "robots", or a topic name from the analysis.
    ``link`` is the ministry URL a map click opens: any listed URL on the
    status views, but only clear-stance countries on a topic view.
    """
    rows: List[Dict[str, Any]] = []
    topics = positions_by_topic(analysis)

    for record in records:
        if not record.code:
            continue
        if view in STATUS_VIEWS:
            status = record.http_status if view == "website" else record.robots_status
            cell = status_style(record.country, status, STATUS_VIEWS[view])
            link = record.ministry_url
        else:
            cell = topic_style(record.country, topics.get(view, {}).get(record.code))
            link = record.ministry_url if cell.category == "Clear stance" else ""
        rows.append({
            "country": record.country,
            "code": record.code,
            "url": record.ministry_url,
            "link": link or "",
            "color": cell.color,
            "category": cell.category,
            "tooltip": cell.tooltip,
        })

    return pd.DataFrame(rows, columns=["country", "code", "url", "link", "color", "category", "tooltip"])


def selected_links(points: Sequence[Dict[str, Any]]) -> List[str]:
    """
    Ministry URLs for clicked map points.

    Each point is a Plotly selection dict whose ``customdata`` carries the
    row's ``link`` (bare or wrapped in a one-element list). Points without
    a link are skipped; duplicates keep their first position.
    """
    links: List[str] = []
    for point in points or []:
        data = point.get("customdata") if isinstance(point, dict) else None
        if isinstance(data, (list, tuple)):
            data = data[0] if data else None
        if isinstance(data, str) and data and data not in links:
            links.append(data)
    return links


def available_views(analysis: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """(value, label) pairs: the status views followed by each analyzed topic."""
    views = [("website", "Website status"), ("robots", "Robots.txt status")]
    for topic in positions_by_topic(analysis):
        views.append((topic, topic))
    return views


def _read_text(location: str, timeout: float = 15.0) -> Optional[str]:
    if location.startswith("http://") or location.startswith("https://"):
        try:
            response = requests.get(location, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Failed to load %s: %s", location, e)
            return None
        return response.text

    path = Path(location)
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")


def load_country_table(location: str) -> List[CountryRecord]:
    """Countries CSV from a local path or URL; empty list if unavailable."""
    if location.startswith("http://") or location.startswith("https://"):
        text = _read_text(location)
        if text is None:
            return []
        reader = csv.DictReader(io.StringIO(text))
        table = CountryTable([f.strip() for f in reader.fieldnames or []], [
            {k.strip(): (v or "").strip() for k, v in row.items() if isinstance(k, str)}
            for row in reader
        ])
    else:
        if not Path(location).exists():
            return []
        table = CountryTable.load(location)
    return [row_to_record(row) for row in table.rows if row.get("code")]


def load_analysis(location: str) -> Optional[Dict[str, Any]]:
    """Combined analysis JSON from a local path or URL; None if unavailable."""
    text = _read_text(location)
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Invalid analysis JSON at %s: %s", location, e)
        return None
