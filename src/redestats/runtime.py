"""Application level helpers for assembling pipeline dependencies."""
from __future__ import annotations

from dataclasses import dataclass

from .analysis import FacetedAggregator
from .config import AppConfig
from .database import Storage, create_storage
from .pipeline import AggregationPipeline


@dataclass(slots=True)
class AggregationResources:
    """Container bundling the objects needed to run the aggregation."""

    pipeline: AggregationPipeline
    storage: Storage
    owns_storage: bool = True

    def close(self) -> None:
        if self.owns_storage:
            self.storage.dispose()


def create_aggregation_pipeline(config: AppConfig, *, storage: Storage | None = None) -> AggregationResources:
    owns_storage = storage is None
    storage_instance = storage or create_storage(config.storage.database_url, echo=config.storage.echo_sql)
    settings = config.aggregation
    aggregator = FacetedAggregator(
        storage_instance,
        top_entities=settings.top_entities,
        batch_size=settings.batch_size,
    )
    pipeline = AggregationPipeline(
        storage=storage_instance,
        aggregator=aggregator,
        max_workers=settings.max_workers,
        max_retries=settings.max_retries,
        retry_backoff=settings.retry_backoff,
        progress_interval=settings.progress_interval,
        batch_size=settings.batch_size,
    )
    return AggregationResources(pipeline=pipeline, storage=storage_instance, owns_storage=owns_storage)


__all__ = ["AggregationResources", "create_aggregation_pipeline"]
