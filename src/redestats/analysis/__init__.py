"""Score resolution, topic indexing and facet computation."""
from __future__ import annotations

from .facets import FacetedAggregator, FacetSummary, compute_facets
from .scores import Excluded, Score, parse_score, resolve_dominant_topic
from .topic_index import TopicIndex, build_topic_index

__all__ = [
    "Excluded",
    "FacetSummary",
    "FacetedAggregator",
    "Score",
    "TopicIndex",
    "build_topic_index",
    "compute_facets",
    "parse_score",
    "resolve_dominant_topic",
]
