"""Core domain entities used across the aggregation engine."""
from __future__ import annotations

from .documents import read_speech_documents, speech_from_document
from .types import (
    ALL_SPEECHES_VALUE,
    AggregationKey,
    AggregationResult,
    Dimension,
    EntityTextCount,
    EntityTypeCount,
    Facets,
    NamedEntityAnnotation,
    PosCount,
    SentimentBucket,
    SessionInfo,
    SpeechFilter,
    SpeechRecord,
    TokenAnnotation,
    TopicAnnotation,
    TopicStat,
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
    "read_speech_documents",
    "speech_from_document",
]
