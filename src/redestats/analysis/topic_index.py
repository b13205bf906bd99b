"""Inverted index from dominant topic to the speeches it dominates."""

from __future__ import annotations

from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple
import logging

from ..core.types import SpeechRecord
from .scores import resolve_dominant_topic

LOGGER = logging.getLogger(__name__)

IndexProgressCallback = Callable[[int], None]


class TopicIndex:
    """Mapping of topic label to the ids of speeches where it is dominant.

    Instances are built once per topics run and discarded afterwards.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Set[str]] = {}
        self.processed = 0
        self.unassigned = 0

    def add(self, label: str, speech_id: str) -> None:
        self._entries.setdefault(label, set()).add(speech_id)

    def labels(self) -> List[str]:
        return list(self._entries)

    def speech_ids(self, label: str) -> FrozenSet[str]:
        return frozenset(self._entries.get(label, ()))

    def items(self) -> Iterator[Tuple[str, FrozenSet[str]]]:
        for label, ids in self._entries.items():
            yield label, frozenset(ids)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, label: object) -> bool:
        return label in self._entries


def build_topic_index(
    speeches: Iterable[SpeechRecord],
    *,
    progress_callback: Optional[IndexProgressCallback] = None,
    progress_interval: int = 1000,
) -> TopicIndex:
    """Scan ``speeches`` once and assign each one to its dominant topic."""

    interval = max(1, progress_interval)
    index = TopicIndex()
    for speech in speeches:
        label = resolve_dominant_topic(speech)
        if label is None:
            index.unassigned += 1
        else:
            index.add(label, speech.identifier)
        index.processed += 1
        if index.processed % interval == 0:
            LOGGER.info("Resolved dominant topics for %s speeches", index.processed)
            if progress_callback:
                progress_callback(index.processed)
    if progress_callback and index.processed % interval:
        progress_callback(index.processed)
    LOGGER.info(
        "Topic index complete: %s topics over %s speeches (%s without dominant topic)",
        len(index),
        index.processed,
        index.unassigned,
    )
    return index


__all__ = ["IndexProgressCallback", "TopicIndex", "build_topic_index"]
