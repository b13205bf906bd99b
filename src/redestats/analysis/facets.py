"""Faceted statistics over a group of annotated speeches.

Every speech of a group is handed to five independent accumulators, one per
facet. The accumulators never see each other's state and are only finalised
once the whole group has been streamed, so a summary either contains all
five facets for the complete group or is not produced at all.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple
import logging

from ..core.types import (
    EntityTextCount,
    EntityTypeCount,
    Facets,
    PosCount,
    SentimentBucket,
    SpeechFilter,
    SpeechRecord,
    TopicStat,
)
from .annotations import named_entities, sentiment_values, tokens, topic_annotations
from .scores import Excluded, parse_score

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..database import Storage

LOGGER = logging.getLogger(__name__)

TOP_ENTITY_TEXTS = 100
SENTIMENT_PRECISION = 2


@dataclass(slots=True)
class FacetSummary:
    """Facets of one group together with the number of speeches in it."""

    facets: Facets
    speech_count: int


class _TopicAccumulator:
    def __init__(self, *, include_counts: bool) -> None:
        self._include_counts = include_counts
        self._totals: Dict[str, float] = {}
        self._counts: Dict[str, int] = {}

    def add(self, speech: SpeechRecord) -> None:
        for annotation in topic_annotations(speech):
            parsed = parse_score(
                annotation.raw_score, context=f"topic {annotation.label!r} of speech {speech.identifier}"
            )
            if isinstance(parsed, Excluded):
                continue
            self._totals[annotation.label] = self._totals.get(annotation.label, 0.0) + parsed.value
            self._counts[annotation.label] = self._counts.get(annotation.label, 0) + 1

    def result(self) -> List[TopicStat]:
        stats = [
            TopicStat(
                label=label,
                average_score=total / self._counts[label],
                total_score=total,
                count=self._counts[label] if self._include_counts else None,
            )
            for label, total in self._totals.items()
        ]
        return sorted(stats, key=lambda stat: stat.average_score, reverse=True)


class _EntityTypeAccumulator:
    def __init__(self) -> None:
        self._counts: Counter[Optional[str]] = Counter()

    def add(self, speech: SpeechRecord) -> None:
        for entity in named_entities(speech):
            self._counts[entity.type] += 1

    def result(self) -> List[EntityTypeCount]:
        entries = [EntityTypeCount(type=entity_type, count=count) for entity_type, count in self._counts.items()]
        return sorted(entries, key=lambda entry: entry.count, reverse=True)


class _EntityTextAccumulator:
    def __init__(self, *, limit: int) -> None:
        self._limit = limit
        self._counts: Counter[Tuple[Optional[str], Optional[str]]] = Counter()

    def add(self, speech: SpeechRecord) -> None:
        for entity in named_entities(speech):
            self._counts[(entity.type, entity.text)] += 1

    def result(self) -> List[EntityTextCount]:
        entries = [
            EntityTextCount(type=entity_type, text=text, count=count)
            for (entity_type, text), count in self._counts.items()
        ]
        entries.sort(key=lambda entry: entry.count, reverse=True)
        return entries[: self._limit]


class _PosAccumulator:
    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()

    def add(self, speech: SpeechRecord) -> None:
        for token in tokens(speech):
            if token.pos is None:
                continue
            self._counts[token.pos] += 1

    def result(self) -> List[PosCount]:
        entries = [PosCount(tag=tag, count=count) for tag, count in self._counts.items()]
        return sorted(entries, key=lambda entry: entry.count, reverse=True)


class _SentimentAccumulator:
    def __init__(self) -> None:
        self._counts: Counter[float] = Counter()

    def add(self, speech: SpeechRecord) -> None:
        # The leading value scores the whole speech and would count twice.
        for raw in sentiment_values(speech)[1:]:
            parsed = parse_score(raw, context=f"sentence sentiment of speech {speech.identifier}")
            if isinstance(parsed, Excluded):
                continue
            self._counts[round(parsed.value, SENTIMENT_PRECISION) + 0.0] += 1

    def result(self) -> List[SentimentBucket]:
        return [SentimentBucket(value=value, count=self._counts[value]) for value in sorted(self._counts)]


def compute_facets(
    speeches: Iterable[SpeechRecord],
    *,
    include_topic_counts: bool = False,
    top_entities: int = TOP_ENTITY_TEXTS,
    speech_filter: Optional[SpeechFilter] = None,
) -> FacetSummary:
    """Compute all facets for the given group of speeches.

    When ``speech_filter`` is given, speeches it does not match are ignored
    entirely, which allows grouping an in-memory corpus without a store.
    """

    topics = _TopicAccumulator(include_counts=include_topic_counts)
    entity_types = _EntityTypeAccumulator()
    entity_texts = _EntityTextAccumulator(limit=max(0, top_entities))
    pos_tags = _PosAccumulator()
    sentiment = _SentimentAccumulator()
    accumulators = (topics, entity_types, entity_texts, pos_tags, sentiment)

    speech_count = 0
    for speech in speeches:
        if speech_filter is not None and not speech_filter.matches(speech):
            continue
        speech_count += 1
        if not speech.analyzed:
            continue
        for accumulator in accumulators:
            accumulator.add(speech)

    return FacetSummary(
        facets=Facets(
            topics=topics.result(),
            named_entities_by_type=entity_types.result(),
            named_entities_by_text=entity_texts.result(),
            pos_tags=pos_tags.result(),
            sentiment=sentiment.result(),
        ),
        speech_count=speech_count,
    )


class FacetedAggregator:
    """Computes facets for the speeches selected by a :class:`SpeechFilter`."""

    def __init__(
        self,
        storage: "Storage",
        *,
        top_entities: int = TOP_ENTITY_TEXTS,
        batch_size: int = 500,
    ) -> None:
        self._storage = storage
        self._top_entities = top_entities
        self._batch_size = batch_size

    def aggregate(self, speech_filter: SpeechFilter, *, include_topic_counts: bool = False) -> FacetSummary:
        speeches = self._storage.iter_speeches(speech_filter, batch_size=self._batch_size)
        summary = compute_facets(
            speeches,
            include_topic_counts=include_topic_counts,
            top_entities=self._top_entities,
        )
        LOGGER.debug("Aggregated %s speeches for %s", summary.speech_count, speech_filter)
        return summary


__all__ = [
    "FacetSummary",
    "FacetedAggregator",
    "SENTIMENT_PRECISION",
    "TOP_ENTITY_TEXTS",
    "compute_facets",
]
