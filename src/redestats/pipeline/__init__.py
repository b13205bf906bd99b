"""Pipeline orchestration components."""
from __future__ import annotations

from .aggregation import (
    AggregationPipeline,
    KeyFailure,
    KeySuccess,
    KeyTask,
    PipelineEvent,
    RunReport,
)

__all__ = [
    "AggregationPipeline",
    "KeyFailure",
    "KeySuccess",
    "KeyTask",
    "PipelineEvent",
    "RunReport",
]
