"""Orchestration of the precomputed NLP summaries."""
from __future__ import annotations

from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from threading import Event
from typing import Callable, Deque, Dict, Iterable, Iterator, List, Literal, Optional, Union
import logging
import time

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from ..analysis import FacetedAggregator, build_topic_index
from ..core.types import (
    ALL_SPEECHES_VALUE,
    AggregationKey,
    AggregationResult,
    Dimension,
    SpeechFilter,
)
from ..database import Storage

LOGGER = logging.getLogger(__name__)

PipelineEventKind = Literal[
    "start",
    "indexing",
    "planned",
    "key_done",
    "key_failed",
    "finished",
    "cancelled",
    "error",
]


@dataclass(slots=True)
class PipelineEvent:
    """Progress notification emitted by :class:`AggregationPipeline`."""

    kind: PipelineEventKind
    dimension: Dimension
    processed: int
    total: int | None = None
    key: AggregationKey | None = None
    message: str | None = None


ProgressCallback = Callable[[PipelineEvent], None]


@dataclass(frozen=True, slots=True)
class KeyTask:
    """Work item producing the summary of one key."""

    key: AggregationKey
    speech_filter: SpeechFilter
    include_counts: bool = False


@dataclass(slots=True)
class KeySuccess:
    key: AggregationKey
    result: AggregationResult
    attempts: int = 1


@dataclass(slots=True)
class KeyFailure:
    key: AggregationKey
    stage: Literal["query", "persist"]
    reason: str


KeyOutcome = Union[KeySuccess, KeyFailure]


@dataclass(slots=True)
class RunReport:
    """Outcome of one dimension run."""

    dimension: Dimension
    succeeded: List[AggregationKey] = field(default_factory=list)
    failed: List[KeyFailure] = field(default_factory=list)
    abandoned: List[AggregationKey] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    def summary(self) -> str:
        text = f"{self.dimension.value}: {self.succeeded_count} succeeded, {self.failed_count} failed"
        if self.cancelled:
            text += f", {len(self.abandoned)} abandoned (cancelled)"
        return text


def _is_connection_failure(exc: BaseException) -> bool:
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class AggregationPipeline:
    """Computes and stores one summary per key of a grouping dimension."""

    def __init__(
        self,
        *,
        storage: Storage,
        aggregator: Optional[FacetedAggregator] = None,
        max_workers: int = 4,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        progress_interval: int = 1000,
        batch_size: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._storage = storage
        self._aggregator = aggregator or FacetedAggregator(storage, batch_size=batch_size)
        self._max_workers = max(1, max_workers)
        self._max_retries = max(1, max_retries)
        self._retry_backoff = max(0.0, retry_backoff)
        self._progress_interval = max(1, progress_interval)
        self._batch_size = batch_size
        self._sleep = sleep

    # --- planning -------------------------------------------------------
    def plan(
        self,
        dimension: Dimension | str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[KeyTask]:
        """Enumerate the keys of ``dimension`` together with their filters."""

        dimension = Dimension.parse(dimension)
        if dimension is Dimension.ALL:
            return [KeyTask(AggregationKey(dimension, ALL_SPEECHES_VALUE), SpeechFilter())]
        if dimension is Dimension.SESSIONS:
            return [
                KeyTask(AggregationKey(dimension, index), SpeechFilter(session_index=index))
                for index in self._storage.distinct_session_indices()
            ]
        if dimension is Dimension.SPEAKERS:
            return [
                KeyTask(AggregationKey(dimension, name), SpeechFilter(speaker=name))
                for name in self._storage.distinct_speakers()
            ]

        def on_index_progress(processed: int) -> None:
            self._notify(
                progress_callback,
                PipelineEvent(
                    kind="indexing",
                    dimension=dimension,
                    processed=processed,
                    message=f"Resolved dominant topics for {processed} speeches",
                ),
            )

        index = build_topic_index(
            self._storage.iter_speeches(batch_size=self._batch_size),
            progress_callback=on_index_progress,
            progress_interval=self._progress_interval,
        )
        return [
            KeyTask(AggregationKey(dimension, label), SpeechFilter(speech_ids=ids), include_counts=True)
            for label, ids in index.items()
            if ids
        ]

    # --- execution ------------------------------------------------------
    def run(
        self,
        dimension: Dimension | str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[Event] = None,
    ) -> RunReport:
        """Aggregate and store every key of ``dimension``.

        A failing key is recorded in the report and does not stop the run.
        Connection failures abort the run and are re-raised.
        """

        dimension = Dimension.parse(dimension)
        report = RunReport(dimension=dimension)
        had_error = False
        self._notify(
            progress_callback,
            PipelineEvent(kind="start", dimension=dimension, processed=0, message=f"Aggregating {dimension.value}"),
        )
        try:
            self._storage.ping()
            tasks = self.plan(dimension, progress_callback=progress_callback)
            LOGGER.info("Planned %s %s keys", len(tasks), dimension.value)
            self._notify(
                progress_callback,
                PipelineEvent(
                    kind="planned",
                    dimension=dimension,
                    processed=0,
                    total=len(tasks),
                    message=f"Found {len(tasks)} keys",
                ),
            )
            self._execute(tasks, report, progress_callback=progress_callback, cancel_event=cancel_event)
        except Exception as exc:
            had_error = True
            LOGGER.exception("Aggregation of %s aborted: %s", dimension.value, exc)
            self._notify(
                progress_callback,
                PipelineEvent(
                    kind="error",
                    dimension=dimension,
                    processed=report.succeeded_count + report.failed_count,
                    message=str(exc),
                ),
            )
            raise
        finally:
            if not had_error:
                self._notify(
                    progress_callback,
                    PipelineEvent(
                        kind="cancelled" if report.cancelled else "finished",
                        dimension=dimension,
                        processed=report.succeeded_count + report.failed_count,
                        message=report.summary(),
                    ),
                )
        LOGGER.info("Aggregation finished - %s", report.summary())
        return report

    def run_many(
        self,
        dimensions: Iterable[Dimension | str],
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[Event] = None,
    ) -> List[RunReport]:
        """Run several dimensions one after another."""

        return list(self.iter_runs(dimensions, progress_callback=progress_callback, cancel_event=cancel_event))

    def iter_runs(
        self,
        dimensions: Iterable[Dimension | str],
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[Event] = None,
    ) -> Iterator[RunReport]:
        """Yield the report of each dimension as soon as its run finishes.

        Duplicate dimensions run once. A fatal error propagates after the
        reports of the dimensions already processed have been yielded.
        """

        ordered: List[Dimension] = []
        for candidate in dimensions:
            dimension = Dimension.parse(candidate)
            if dimension not in ordered:
                ordered.append(dimension)

        for dimension in ordered:
            if cancel_event and cancel_event.is_set():
                LOGGER.warning("Skipping %s - run cancelled", dimension.value)
                return
            yield self.run(dimension, progress_callback=progress_callback, cancel_event=cancel_event)

    def _execute(
        self,
        tasks: List[KeyTask],
        report: RunReport,
        *,
        progress_callback: Optional[ProgressCallback],
        cancel_event: Optional[Event],
    ) -> None:
        pending: Deque[KeyTask] = deque(tasks)
        in_flight: Dict[Future[KeyOutcome], KeyTask] = {}
        window = self._max_workers * 2
        total = len(tasks)

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="redestats") as executor:
            try:
                while pending or in_flight:
                    if cancel_event and cancel_event.is_set() and not report.cancelled:
                        report.cancelled = True
                        LOGGER.warning(
                            "Cancellation requested - waiting for %s running keys, abandoning %s",
                            len(in_flight),
                            len(pending),
                        )
                    while pending and not report.cancelled and len(in_flight) < window:
                        task = pending.popleft()
                        in_flight[executor.submit(self._process, task)] = task
                    if not in_flight:
                        break
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    for future in done:
                        in_flight.pop(future)
                        self._record(future.result(), report, total, progress_callback)
            except BaseException:
                for future in in_flight:
                    future.cancel()
                raise
        report.abandoned.extend(task.key for task in pending)

    def _record(
        self,
        outcome: KeyOutcome,
        report: RunReport,
        total: int,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        key = outcome.key
        if isinstance(outcome, KeySuccess):
            report.succeeded.append(key)
            processed = report.succeeded_count + report.failed_count
            LOGGER.info("[%s/%s] Stored %s summary for %r", processed, total, key.dimension.value, key.value)
            self._notify(
                progress_callback,
                PipelineEvent(kind="key_done", dimension=key.dimension, processed=processed, total=total, key=key),
            )
            return
        report.failed.append(outcome)
        processed = report.succeeded_count + report.failed_count
        LOGGER.error(
            "[%s/%s] Failed to %s %s summary for %r: %s",
            processed,
            total,
            "aggregate" if outcome.stage == "query" else "store",
            key.dimension.value,
            key.value,
            outcome.reason,
        )
        self._notify(
            progress_callback,
            PipelineEvent(
                kind="key_failed",
                dimension=key.dimension,
                processed=processed,
                total=total,
                key=key,
                message=outcome.reason,
            ),
        )

    def _process(self, task: KeyTask) -> KeyOutcome:
        try:
            summary = self._aggregator.aggregate(task.speech_filter, include_topic_counts=task.include_counts)
        except SQLAlchemyError as exc:
            if _is_connection_failure(exc):
                raise
            return KeyFailure(task.key, "query", str(exc))
        except Exception as exc:
            LOGGER.exception("Aggregating %s summary for %r failed", task.key.dimension.value, task.key.value)
            return KeyFailure(task.key, "query", f"{type(exc).__name__}: {exc}")
        result = AggregationResult(
            key=task.key,
            facets=summary.facets,
            speech_count=summary.speech_count if task.include_counts else None,
        )
        return self._persist(result)

    def _persist(self, result: AggregationResult) -> KeyOutcome:
        last_exc: Optional[SQLAlchemyError] = None
        for attempt in range(1, self._max_retries + 1):
            try:
                self._storage.save_aggregation(result)
                return KeySuccess(result.key, result, attempts=attempt)
            except SQLAlchemyError as exc:
                if _is_connection_failure(exc):
                    raise
                last_exc = exc
                LOGGER.warning(
                    "Storing %s failed (attempt %s/%s): %s", result.key, attempt, self._max_retries, exc
                )
                if attempt < self._max_retries:
                    self._sleep(self._retry_backoff * 2 ** (attempt - 1))
        return KeyFailure(result.key, "persist", str(last_exc))

    @staticmethod
    def _notify(callback: Optional[ProgressCallback], event: PipelineEvent) -> None:
        if callback:
            callback(event)


__all__ = [
    "AggregationPipeline",
    "KeyFailure",
    "KeyOutcome",
    "KeySuccess",
    "KeyTask",
    "PipelineEvent",
    "RunReport",
]
