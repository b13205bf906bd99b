from __future__ import annotations

from threading import Event
from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, OperationalError

from redestats.analysis import FacetedAggregator
from redestats.core.types import Dimension, SessionInfo, SpeechRecord
from redestats.database import Storage
from redestats.pipeline import AggregationPipeline, PipelineEvent


class FlakyStorage(Storage):
    """Storage whose summary writes fail a configurable number of times."""

    def __init__(self, engine, *, failing_values=(), failures_per_value=10**6):
        super().__init__(engine)
        self.failing_values = set(failing_values)
        self.failures_per_value = failures_per_value
        self.attempts = {}

    def save_aggregation(self, result):
        value = result.key.value
        self.attempts[value] = self.attempts.get(value, 0) + 1
        if value in self.failing_values and self.attempts[value] <= self.failures_per_value:
            raise OperationalError("INSERT INTO aggregated_data", None, Exception("database is locked"))
        super().save_aggregation(result)


class FailingAggregator(FacetedAggregator):
    def __init__(self, storage, *, failing_session, error):
        super().__init__(storage)
        self.failing_session = failing_session
        self.error = error

    def aggregate(self, speech_filter, *, include_topic_counts=False):
        if speech_filter.session_index == self.failing_session:
            raise self.error
        return super().aggregate(speech_filter, include_topic_counts=include_topic_counts)


def make_speech(identifier, speaker, session_index, *, topics=(), sentiment=None):
    bundle = {
        "topics": [{"value": label, "score": score} for label, score in topics],
        "namedEntities": [{"type": "PER", "text": speaker}],
        "tokens": [{"text": "Rede", "pos": "NN"}, {"text": ".", "pos": None}],
        "sentiment": sentiment if sentiment is not None else [{"sentiment": 0.1}, {"sentiment": 0.2}],
    }
    return SpeechRecord(
        identifier=identifier,
        speaker=speaker,
        party="SPD",
        session=SessionInfo(index=session_index, title=f"{session_index}. Sitzung"),
        text="Rede.",
        nlp_results=bundle,
    )


def sample_corpus() -> List[SpeechRecord]:
    return [
        make_speech("S-1", "Bas", "1", topics=[("Umwelt", "0.9"), ("Wirtschaft", 0.2)]),
        make_speech("S-2", "Merz", "2", topics=[("Wirtschaft", 0.7)]),
        make_speech("S-3", "Bas", "2", topics=[("Wirtschaft", "0.6"), ("Wirtschaft", "abc")]),
        SpeechRecord(identifier="S-4", speaker="Scholz", session=SessionInfo(index="2")),
    ]


def _storage(tmp_path, name="pipeline.db", **kwargs):
    engine = create_engine(f"sqlite:///{(tmp_path / name).as_posix()}")
    storage = FlakyStorage(engine, **kwargs)
    storage.ensure_schema()
    storage.upsert_speeches(sample_corpus())
    return storage


@pytest.fixture()
def storage(tmp_path):
    instance = _storage(tmp_path)
    yield instance
    instance.dispose()


def test_session_dimension_stores_one_summary_per_session(storage):
    pipeline = AggregationPipeline(storage=storage, max_workers=2)

    report = pipeline.run("sessions")

    assert report.ok
    assert sorted(key.value for key in report.succeeded) == ["1", "2"]
    first = storage.get_aggregation(Dimension.SESSIONS, "1").to_document()
    second = storage.get_aggregation(Dimension.SESSIONS, "2").to_document()
    assert first["type"] == "sessions" and first["value"] == "1"
    assert "speechCount" not in first
    assert [entry["_id"] for entry in first["nlpAggregation"]["topics"]] == ["Umwelt", "Wirtschaft"]
    assert [entry["_id"]["text"] for entry in first["nlpAggregation"]["namedEntitiesByText"]] == ["Bas"]
    assert second["nlpAggregation"]["pos_tags"] == [{"_id": "NN", "count": 2}]
    assert second["nlpAggregation"]["sentiment"] == [{"_id": 0.2, "count": 2}]


def test_all_dimension_uses_single_key(storage):
    report = AggregationPipeline(storage=storage).run(Dimension.ALL)

    assert [key.value for key in report.succeeded] == ["all speeches"]
    document = storage.get_aggregation("all", "all speeches").to_document()
    assert document["nlpAggregation"]["namedEntitiesByType"] == [{"_id": "PER", "count": 3}]
    assert "count" not in document["nlpAggregation"]["topics"][0]


def test_speaker_dimension_skips_blank_names(storage):
    storage.upsert_speeches([SpeechRecord(identifier="S-5", speaker=" ")])

    report = AggregationPipeline(storage=storage).run("speakers")

    assert sorted(key.value for key in report.succeeded) == ["Bas", "Merz", "Scholz"]
    empty = storage.get_aggregation("speakers", "Scholz").to_document()
    assert empty["nlpAggregation"]["topics"] == []


def test_topic_dimension_groups_by_dominant_topic(storage):
    events: List[PipelineEvent] = []
    pipeline = AggregationPipeline(storage=storage, progress_interval=2)

    report = pipeline.run("topics", progress_callback=events.append)

    assert sorted(key.value for key in report.succeeded) == ["Umwelt", "Wirtschaft"]
    umwelt = storage.get_aggregation("topics", "Umwelt").to_document()
    wirtschaft = storage.get_aggregation("topics", "Wirtschaft").to_document()
    assert umwelt["speechCount"] == 1
    assert wirtschaft["speechCount"] == 2
    assert wirtschaft["nlpAggregation"]["topics"] == [
        {"_id": "Wirtschaft", "averageScore": pytest.approx(0.65), "totalScore": pytest.approx(1.3), "count": 2}
    ]
    kinds = [event.kind for event in events]
    assert kinds[0] == "start"
    assert [event.processed for event in events if event.kind == "indexing"] == [2, 4]
    assert kinds.count("key_done") == 2
    assert kinds[-1] == "finished"


def test_rerunning_a_dimension_is_idempotent(storage):
    pipeline = AggregationPipeline(storage=storage, max_workers=3)

    pipeline.run("sessions")
    first = [storage.get_aggregation("sessions", value).to_document() for value in ("1", "2")]
    pipeline.run("sessions")
    second = [storage.get_aggregation("sessions", value).to_document() for value in ("1", "2")]

    assert first == second
    assert storage.count_aggregations("sessions") == 2


def test_persistence_is_retried_with_backoff(tmp_path):
    storage = _storage(tmp_path, failing_values={"2"}, failures_per_value=2)
    sleeps: List[float] = []
    pipeline = AggregationPipeline(storage=storage, max_retries=3, retry_backoff=0.5, sleep=sleeps.append)

    report = pipeline.run("sessions")

    assert report.ok
    assert storage.attempts["2"] == 3
    assert sleeps == [0.5, 1.0]
    assert storage.get_aggregation("sessions", "2") is not None
    storage.dispose()


def test_persistent_write_failure_marks_key_failed_and_continues(tmp_path):
    storage = _storage(tmp_path, failing_values={"1"})
    pipeline = AggregationPipeline(storage=storage, max_retries=2, sleep=lambda _: None)

    report = pipeline.run("sessions")

    assert [key.value for key in report.succeeded] == ["2"]
    assert report.failed_count == 1
    failure = report.failed[0]
    assert failure.key.value == "1" and failure.stage == "persist"
    assert "database is locked" in failure.reason
    assert storage.get_aggregation("sessions", "1") is None
    assert not report.ok
    assert report.summary() == "sessions: 1 succeeded, 1 failed"
    storage.dispose()


def test_query_failure_for_one_key_does_not_stop_the_run(storage):
    error = OperationalError("SELECT", None, Exception("disk I/O error"))
    aggregator = FailingAggregator(storage, failing_session="1", error=error)
    events: List[PipelineEvent] = []
    pipeline = AggregationPipeline(storage=storage, aggregator=aggregator)

    report = pipeline.run("sessions", progress_callback=events.append)

    assert [key.value for key in report.succeeded] == ["2"]
    assert [(failure.key.value, failure.stage) for failure in report.failed] == [("1", "query")]
    failed_events = [event for event in events if event.kind == "key_failed"]
    assert failed_events[0].key.value == "1"
    assert events[-1].kind == "finished"


def test_connection_loss_aborts_the_run(storage):
    error = DBAPIError("SELECT", None, Exception("server closed the connection"), connection_invalidated=True)
    aggregator = FailingAggregator(storage, failing_session="1", error=error)
    events: List[PipelineEvent] = []
    pipeline = AggregationPipeline(storage=storage, aggregator=aggregator, max_workers=1)

    with pytest.raises(DBAPIError):
        pipeline.run("sessions", progress_callback=events.append)

    assert events[-1].kind == "error"


def test_cancellation_finishes_running_keys_and_abandons_the_rest(storage):
    storage.upsert_speeches([make_speech(f"S-{number}", "Bas", str(number)) for number in range(10, 15)])
    cancel_event = Event()
    events: List[PipelineEvent] = []

    def record(event: PipelineEvent) -> None:
        events.append(event)
        if event.kind == "key_done":
            cancel_event.set()

    pipeline = AggregationPipeline(storage=storage, max_workers=1)
    report = pipeline.run("sessions", progress_callback=record, cancel_event=cancel_event)

    assert report.cancelled
    assert report.succeeded_count == 2
    assert len(report.abandoned) == 5
    assert events[-1].kind == "cancelled"
    assert storage.count_aggregations("sessions") == 2


def test_run_many_reports_each_dimension_once(storage):
    pipeline = AggregationPipeline(storage=storage)

    reports = pipeline.run_many(["all", "sessions", "all"])

    assert [report.dimension for report in reports] == [Dimension.ALL, Dimension.SESSIONS]


def test_unknown_dimension_is_rejected(storage):
    with pytest.raises(ValueError):
        AggregationPipeline(storage=storage).run("parties")


def test_malformed_annotations_do_not_abort_other_sessions(tmp_path):
    engine = create_engine(f"sqlite:///{(tmp_path / 'malformed.db').as_posix()}")
    storage = Storage(engine)
    storage.ensure_schema()
    broken = make_speech("S-1", "Bas", "1")
    broken.nlp_results["namedEntities"] = [{"type": ["PER"], "text": "x"}]
    storage.upsert_speeches([broken, make_speech("S-2", "Merz", "2")])

    report = AggregationPipeline(storage=storage, max_workers=1).run("sessions")

    assert report.ok
    assert sorted(key.value for key in report.succeeded) == ["1", "2"]
    stored = storage.get_aggregation("sessions", "1").to_document()
    assert stored["nlpAggregation"]["namedEntitiesByType"] == [{"_id": None, "count": 1}]
    storage.dispose()


def test_unexpected_error_for_one_key_is_recorded_as_failure(storage):
    aggregator = FailingAggregator(storage, failing_session="1", error=TypeError("unhashable type: 'list'"))
    pipeline = AggregationPipeline(storage=storage, aggregator=aggregator, max_workers=1)

    report = pipeline.run("sessions")

    assert [key.value for key in report.succeeded] == ["2"]
    assert [(failure.key.value, failure.stage) for failure in report.failed] == [("1", "query")]
    assert "TypeError" in report.failed[0].reason


def test_iter_runs_yields_finished_reports_before_a_fatal_error(storage, monkeypatch):
    pipeline = AggregationPipeline(storage=storage)
    original_run = AggregationPipeline.run

    def run(self, dimension, **kwargs):
        if Dimension.parse(dimension) is Dimension.SESSIONS:
            raise DBAPIError("SELECT 1", None, Exception("server closed the connection"), connection_invalidated=True)
        return original_run(self, dimension, **kwargs)

    monkeypatch.setattr(AggregationPipeline, "run", run)
    reports = []

    with pytest.raises(DBAPIError):
        for report in pipeline.iter_runs(["all", "sessions", "speakers"]):
            reports.append(report)

    assert [report.dimension for report in reports] == [Dimension.ALL]
    assert storage.count_aggregations("speakers") == 0
