"""Precomputed NLP summaries of annotated parliamentary speeches."""
from __future__ import annotations

from .analysis import (
    Excluded,
    FacetedAggregator,
    FacetSummary,
    Score,
    TopicIndex,
    build_topic_index,
    compute_facets,
    parse_score,
    resolve_dominant_topic,
)
from .config import AggregationConfig, AppConfig, StorageConfig, load_config
from .core import (
    AggregationKey,
    AggregationResult,
    Dimension,
    Facets,
    SessionInfo,
    SpeechFilter,
    SpeechRecord,
    speech_from_document,
)
from .database import AggregationModel, Base, SpeechModel, Storage, create_storage
from .pipeline import AggregationPipeline, KeyFailure, KeySuccess, PipelineEvent, RunReport
from .runtime import AggregationResources, create_aggregation_pipeline

__all__ = [
    "AggregationConfig",
    "AggregationKey",
    "AggregationModel",
    "AggregationPipeline",
    "AggregationResources",
    "AggregationResult",
    "AppConfig",
    "Base",
    "Dimension",
    "Excluded",
    "FacetSummary",
    "FacetedAggregator",
    "Facets",
    "KeyFailure",
    "KeySuccess",
    "PipelineEvent",
    "RunReport",
    "Score",
    "SessionInfo",
    "SpeechFilter",
    "SpeechModel",
    "SpeechRecord",
    "Storage",
    "StorageConfig",
    "TopicIndex",
    "build_topic_index",
    "compute_facets",
    "create_aggregation_pipeline",
    "create_storage",
    "load_config",
    "parse_score",
    "resolve_dominant_topic",
    "speech_from_document",
]
