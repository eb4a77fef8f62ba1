"""
Data models for the scrape → analyze → verify pipeline.

Field names are pythonic; ``to_dict``/``from_dict`` map them onto the JSON
keys the result files and the dashboard use.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any


def clamp_score(value: Any) -> float:
    """Coerce a model-supplied score into [0, 1]; non-numeric becomes 0."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return max(0.0, min(1.0, score))


@dataclass
class CountryRecord:
    country: str
    code: str
    ministry_url: str = ""
    http_status: str = ""
    robots_status: str = ""


@dataclass
class CountryContent:
    code: str
    raw_text: str
    timestamp: str
    source_url: str = ""


@dataclass(frozen=True)
class TopicDefinition:
    name: str
    description: str

    @property
    def slug(self) -> str:
        return topic_slug(self.name)


def topic_slug(name: str) -> str:
    """Lowercase the topic name and replace every non-alphanumeric char with '_'."""
    return re.sub(r"[^a-z0-9]", "_", name.lower())


@dataclass
class ProbeResult:
    final_url: str
    status: str


@dataclass
class ScrapeMetadata:
    country: str
    code: str
    url: str
    timestamp: str
    success: bool
    error: Optional[str] = None
    content_length: int = 0
    processing_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "country": self.country,
            "code": self.code,
            "url": self.url,
            "timestamp": self.timestamp,
            "success": self.success,
            "contentLength": self.content_length,
            "processingTimeMs": self.processing_time_ms,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class StancePosition:
    country_code: str
    topic: str
    exact_quote: str
    stance_summary: str = ""
    relevance_score: float = 0.0
    clarity_score: float = 0.0
    verification_status: str = ""
    verified: bool = False
    source_timestamp: str = ""
    source_url: str = ""

    def to_entry(self) -> Dict[str, Dict[str, Any]]:
        """Serialize as the single-key ``{code: {...}}`` object used on disk."""
        return {
            self.country_code: {
                "summarised_stance_in_english": self.stance_summary,
                "exact_quote": self.exact_quote,
                "relevance_to_topic": self.relevance_score,
                "clarity_of_stance": self.clarity_score,
                "verification": self.verification_status,
                "verified": self.verified,
                "source_timestamp": self.source_timestamp,
                "source_url": self.source_url,
            }
        }

    @classmethod
    def from_payload(cls, code: str, topic: str, payload: Dict[str, Any]) -> "StancePosition":
        return cls(
            country_code=code,
            topic=topic,
            exact_quote=payload.get("exact_quote", ""),
            stance_summary=payload.get("summarised_stance_in_english", "") or "",
            relevance_score=clamp_score(payload.get("relevance_to_topic")),
            clarity_score=clamp_score(payload.get("clarity_of_stance")),
            verification_status=payload.get("verification", "") or "",
            verified=bool(payload.get("verified", False)),
            source_timestamp=payload.get("source_timestamp", "") or "",
            source_url=payload.get("source_url", "") or "",
        )


@dataclass
class TopicAnalysisResult:
    topic: str
    countries: List[StancePosition] = field(default_factory=list)
    data_context: str = ""
    analysis_timestamp: str = ""
    source_data_timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "countries": [p.to_entry() for p in self.countries],
            "dataContext": self.data_context,
            "analysisTimestamp": self.analysis_timestamp,
            "sourceDataTimestamp": self.source_data_timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TopicAnalysisResult":
        topic = data.get("topic", "")
        positions = []
        for entry in data.get("countries", []) or []:
            if not isinstance(entry, dict):
                continue
            for code, payload in entry.items():
                if isinstance(payload, dict):
                    positions.append(StancePosition.from_payload(code, topic, payload))
        return cls(
            topic=topic,
            countries=positions,
            data_context=data.get("dataContext", ""),
            analysis_timestamp=data.get("analysisTimestamp", ""),
            source_data_timestamp=data.get("sourceDataTimestamp", ""),
        )


@dataclass
class CombinedAnalysisResult:
    country_positions: List[Dict[str, Any]] = field(default_factory=list)
    data_context: str = ""
    analysis_timestamp: str = ""
    topic_analysis_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "countryPositions": self.country_positions,
            "dataContext": self.data_context,
            "analysisTimestamp": self.analysis_timestamp,
            "topicAnalysisFiles": self.topic_analysis_files,
        }
