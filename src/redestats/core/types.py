"""Typed domain objects for the aggregation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

ALL_SPEECHES_VALUE = "all speeches"


class Dimension(str, Enum):
    """Grouping axis of a precomputed summary.

    The enum values are the ``type`` strings stored with every summary.
    """

    ALL = "all"
    SESSIONS = "sessions"
    SPEAKERS = "speakers"
    TOPICS = "topics"

    @classmethod
    def parse(cls, value: "str | Dimension") -> "Dimension":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown dimension {value!r} (expected one of: {choices})") from None


@dataclass(slots=True)
class SessionInfo:
    """Metadata of the sitting a speech was given in."""

    index: Optional[str] = None
    title: Optional[str] = None
    date: Optional[str] = None


@dataclass(slots=True)
class SpeechRecord:
    """A single speech including its (optional) NLP annotation bundle."""

    identifier: str
    speaker: Optional[str] = None
    party: Optional[str] = None
    session: SessionInfo = field(default_factory=SessionInfo)
    text: str = ""
    nlp_results: Optional[Dict[str, Any]] = None

    @property
    def analyzed(self) -> bool:
        return self.nlp_results is not None


@dataclass(frozen=True, slots=True)
class TopicAnnotation:
    label: str
    raw_score: Any


@dataclass(frozen=True, slots=True)
class NamedEntityAnnotation:
    type: Optional[str]
    text: Optional[str]
    begin: Optional[int] = None
    end: Optional[int] = None


@dataclass(frozen=True, slots=True)
class TokenAnnotation:
    text: Optional[str]
    pos: Optional[str]


@dataclass(frozen=True, slots=True)
class SpeechFilter:
    """Membership predicate selecting the speeches of one summary.

    Unset criteria match everything, so ``SpeechFilter()`` selects the whole
    corpus. Session indices are compared after trimming whitespace.
    """

    session_index: Optional[str] = None
    speaker: Optional[str] = None
    speech_ids: Optional[FrozenSet[str]] = None

    def matches(self, speech: SpeechRecord) -> bool:
        if self.session_index is not None:
            index = speech.session.index
            if index is None or index.strip() != self.session_index.strip():
                return False
        if self.speaker is not None and speech.speaker != self.speaker:
            return False
        if self.speech_ids is not None and speech.identifier not in self.speech_ids:
            return False
        return True


@dataclass(frozen=True, slots=True)
class AggregationKey:
    """Identifies exactly one summary document."""

    dimension: Dimension
    value: str

    def __str__(self) -> str:
        return f"{self.dimension.value}:{self.value}"


@dataclass(slots=True)
class TopicStat:
    label: str
    average_score: float
    total_score: float
    count: Optional[int] = None


@dataclass(slots=True)
class EntityTypeCount:
    type: Optional[str]
    count: int


@dataclass(slots=True)
class EntityTextCount:
    type: Optional[str]
    text: Optional[str]
    count: int


@dataclass(slots=True)
class PosCount:
    tag: str
    count: int


@dataclass(slots=True)
class SentimentBucket:
    value: float
    count: int


@dataclass(slots=True)
class Facets:
    """The five statistical facets of one summary.

    Every list is present even when no speech contributed to it.
    """

    topics: List[TopicStat] = field(default_factory=list)
    named_entities_by_type: List[EntityTypeCount] = field(default_factory=list)
    named_entities_by_text: List[EntityTextCount] = field(default_factory=list)
    pos_tags: List[PosCount] = field(default_factory=list)
    sentiment: List[SentimentBucket] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        topics: List[Dict[str, Any]] = []
        for stat in self.topics:
            entry: Dict[str, Any] = {
                "_id": stat.label,
                "averageScore": stat.average_score,
                "totalScore": stat.total_score,
            }
            if stat.count is not None:
                entry["count"] = stat.count
            topics.append(entry)
        return {
            "topics": topics,
            "namedEntitiesByType": [{"_id": item.type, "count": item.count} for item in self.named_entities_by_type],
            "namedEntitiesByText": [
                {"_id": {"type": item.type, "text": item.text}, "count": item.count}
                for item in self.named_entities_by_text
            ],
            "pos_tags": [{"_id": item.tag, "count": item.count} for item in self.pos_tags],
            "sentiment": [{"_id": item.value, "count": item.count} for item in self.sentiment],
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Facets":
        return cls(
            topics=[
                TopicStat(
                    label=entry["_id"],
                    average_score=entry["averageScore"],
                    total_score=entry["totalScore"],
                    count=entry.get("count"),
                )
                for entry in data.get("topics") or []
            ],
            named_entities_by_type=[
                EntityTypeCount(type=entry["_id"], count=entry["count"])
                for entry in data.get("namedEntitiesByType") or []
            ],
            named_entities_by_text=[
                EntityTextCount(type=entry["_id"].get("type"), text=entry["_id"].get("text"), count=entry["count"])
                for entry in data.get("namedEntitiesByText") or []
            ],
            pos_tags=[PosCount(tag=entry["_id"], count=entry["count"]) for entry in data.get("pos_tags") or []],
            sentiment=[
                SentimentBucket(value=entry["_id"], count=entry["count"]) for entry in data.get("sentiment") or []
            ],
        )


@dataclass(slots=True)
class AggregationResult:
    """A precomputed summary for one :class:`AggregationKey`."""

    key: AggregationKey
    facets: Facets
    speech_count: Optional[int] = None

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {"type": self.key.dimension.value, "value": self.key.value}
        if self.speech_count is not None:
            document["speechCount"] = self.speech_count
        document["nlpAggregation"] = self.facets.to_document()
        return document

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "AggregationResult":
        return cls(
            key=AggregationKey(Dimension.parse(data["type"]), str(data["value"])),
            facets=Facets.from_document(data.get("nlpAggregation") or {}),
            speech_count=data.get("speechCount"),
        )


__all__ = [
    "ALL_SPEECHES_VALUE",
    "AggregationKey",
    "AggregationResult",
    "Dimension",
    "EntityTextCount",
    "EntityTypeCount",
    "Facets",
    "NamedEntityAnnotation",
    "PosCount",
    "SentimentBucket",
    "SessionInfo",
    "SpeechFilter",
    "SpeechRecord",
    "TokenAnnotation",
    "TopicAnnotation",
    "TopicStat",
]
