from __future__ import annotations

import json

import pytest
from sqlalchemy.exc import DBAPIError

import redestats.config.settings as config_settings
from redestats.cli import main
from redestats.core import Dimension
from redestats.pipeline import AggregationPipeline


@pytest.fixture()
def database_url(tmp_path, monkeypatch):
    monkeypatch.setattr(config_settings, "_DEFAULT_CONFIG_LOCATIONS", (tmp_path / "missing.json",))
    url = f"sqlite:///{(tmp_path / 'cli.db').as_posix()}"
    monkeypatch.setenv("REDESTATS_STORAGE_DATABASE_URL", url)
    monkeypatch.setenv("REDESTATS_AGGREGATION_MAX_WORKERS", "1")
    return url


@pytest.fixture()
def export_file(tmp_path):
    documents = [
        {
            "_id": "ID20100",
            "speaker": "Bärbel Bas",
            "protocol": {"index": "100", "title": "100. Sitzung", "date": "01.02.2025"},
            "text": "Ich eröffne die Sitzung.",
            "nlpResults": {
                "topics": [{"value": "Politik", "score": "0.8"}],
                "namedEntities": [{"type": "PER", "text": "Bas"}],
                "tokens": [{"text": "Ich", "pos": "PPER"}],
                "sentiment": [{"sentiment": 0.3}, {"sentiment": 0.25}],
            },
        },
        {
            "_id": "ID20101",
            "speaker": "Friedrich Merz",
            "protocol": {"index": "101"},
            "text": "Vielen Dank.",
        },
        {"speaker": "ohne Kennung"},
    ]
    path = tmp_path / "speeches.jsonl"
    path.write_text("\n".join(json.dumps(document) for document in documents), encoding="utf8")
    return path


def test_load_aggregate_and_show(database_url, export_file, capsys):
    assert main(["load", str(export_file)]) == 0
    assert "Loaded 2 speeches" in capsys.readouterr().out

    assert main(["aggregate", "sessions", "topics"]) == 0
    output = capsys.readouterr().out
    assert "sessions: 2 succeeded, 0 failed" in output
    assert "topics: 1 succeeded, 0 failed" in output

    assert main(["show", "topics", "Politik"]) == 0
    document = json.loads(capsys.readouterr().out)
    assert document["type"] == "topics"
    assert document["speechCount"] == 1
    assert document["nlpAggregation"]["sentiment"] == [{"_id": 0.25, "count": 1}]


def test_show_reports_missing_summary(database_url, capsys):
    assert main(["show", "speakers", "Niemand"]) == 1
    assert "No summary stored" in capsys.readouterr().out


def test_suggest_lists_matching_values(database_url, export_file, capsys):
    main(["load", str(export_file)])
    main(["aggregate", "speakers"])
    capsys.readouterr()

    assert main(["suggest", "speakers", "merz"]) == 0
    assert capsys.readouterr().out.splitlines() == ["Friedrich Merz"]


def test_unknown_dimension_is_a_usage_error(database_url):
    with pytest.raises(SystemExit) as excinfo:
        main(["aggregate", "parties"])
    assert excinfo.value.code == 2


def test_load_skips_array_entries_that_are_not_objects(database_url, tmp_path, capsys):
    path = tmp_path / "speeches.json"
    path.write_text(json.dumps([{"_id": "ID1", "speaker": "A"}, 42, "ID2", {"_id": "ID3"}]), encoding="utf8")

    assert main(["load", str(path)]) == 0
    assert "Loaded 2 speeches" in capsys.readouterr().out


def test_aggregate_prints_finished_dimensions_before_a_fatal_error(database_url, export_file, monkeypatch, capsys):
    main(["load", str(export_file)])
    capsys.readouterr()
    original_run = AggregationPipeline.run

    def run(self, dimension, **kwargs):
        if Dimension.parse(dimension) is Dimension.SPEAKERS:
            raise DBAPIError("SELECT 1", None, Exception("server closed the connection"), connection_invalidated=True)
        return original_run(self, dimension, **kwargs)

    monkeypatch.setattr(AggregationPipeline, "run", run)

    with pytest.raises(DBAPIError):
        main(["aggregate", "sessions", "speakers", "topics"])

    output = capsys.readouterr().out
    assert "sessions: 2 succeeded, 0 failed" in output
    assert "Run aborted after 1 of 3 dimensions" in output
    assert "topics:" not in output
