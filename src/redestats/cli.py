"""Command line interface for the aggregation engine."""
from __future__ import annotations

import argparse
import json
import logging
import signal
from pathlib import Path
from threading import Event
from typing import Iterator, List, Optional

from .config import AppConfig, load_config
from .core import Dimension, SpeechRecord, read_speech_documents, speech_from_document
from .database import create_storage
from .pipeline import RunReport
from .runtime import create_aggregation_pipeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
LOGGER = logging.getLogger(__name__)

_DIMENSION_CHOICES = [dimension.value for dimension in Dimension]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Precomputed NLP summaries of parliamentary speeches")
    parser.add_argument("--config", type=Path, help="Path to an explicit configuration file")
    commands = parser.add_subparsers(dest="command", required=True)

    aggregate = commands.add_parser("aggregate", help="Compute and store summaries")
    aggregate.add_argument(
        "dimensions",
        nargs="*",
        metavar="DIMENSION",
        help=f"Dimensions to aggregate: {', '.join(_DIMENSION_CHOICES)} (default: all of them)",
    )

    load = commands.add_parser("load", help="Import annotated speech documents (JSON array or JSON lines)")
    load.add_argument("path", type=Path, help="File containing the exported speech documents")

    show = commands.add_parser("show", help="Print a stored summary as JSON")
    show.add_argument("dimension", choices=_DIMENSION_CHOICES)
    show.add_argument("value", help="Session index, speaker name, topic label or 'all speeches'")

    suggest = commands.add_parser("suggest", help="List stored values containing a search string")
    suggest.add_argument("dimension", choices=_DIMENSION_CHOICES)
    suggest.add_argument("query")
    suggest.add_argument("--limit", type=int, default=10)
    return parser


def _print_report(report: RunReport) -> None:
    print(report.summary())
    for failure in report.failed:
        print(f"  failed [{failure.stage}] {failure.key.value!r}: {failure.reason}")


def _run_aggregate(config: AppConfig, dimensions: List[str]) -> int:
    selected = dimensions or _DIMENSION_CHOICES
    cancel_event = Event()

    def request_shutdown(signum, frame) -> None:  # pragma: no cover - triggered by the user
        LOGGER.warning("Interrupt received - finishing running keys before shutting down")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, request_shutdown)
    resources = create_aggregation_pipeline(config)
    reports: List[RunReport] = []
    try:
        for report in resources.pipeline.iter_runs(selected, cancel_event=cancel_event):
            reports.append(report)
            _print_report(report)
    except Exception:
        print(f"Run aborted after {len(reports)} of {len(set(selected))} dimensions")
        raise
    finally:
        resources.close()
        signal.signal(signal.SIGINT, previous_handler)

    if len(reports) < len(set(selected)):
        print("Run cancelled before all dimensions were processed")
        return 1
    return 0 if all(report.ok for report in reports) else 1


def _iter_records(path: Path) -> Iterator[SpeechRecord]:
    for position, document in enumerate(read_speech_documents(path), start=1):
        try:
            yield speech_from_document(document)
        except ValueError as exc:
            LOGGER.warning("Skipping document %s in %s: %s", position, path, exc)


def _run_load(config: AppConfig, path: Path) -> int:
    storage = create_storage(config.storage.database_url, echo=config.storage.echo_sql)
    batch: List[SpeechRecord] = []
    stored = 0
    try:
        for record in _iter_records(path):
            batch.append(record)
            if len(batch) >= config.aggregation.batch_size:
                stored += storage.upsert_speeches(batch)
                batch.clear()
        if batch:
            stored += storage.upsert_speeches(batch)
    finally:
        storage.dispose()
    LOGGER.info("Loaded %s speeches from %s", stored, path)
    print(f"Loaded {stored} speeches")
    return 0


def _run_show(config: AppConfig, dimension: str, value: str) -> int:
    storage = create_storage(config.storage.database_url, echo=config.storage.echo_sql)
    try:
        result = storage.get_aggregation(dimension, value)
    finally:
        storage.dispose()
    if result is None:
        print(f"No summary stored for {dimension} {value!r}")
        return 1
    print(json.dumps(result.to_document(), ensure_ascii=False, indent=2))
    return 0


def _run_suggest(config: AppConfig, dimension: str, query: str, limit: int) -> int:
    storage = create_storage(config.storage.database_url, echo=config.storage.echo_sql)
    try:
        values = storage.suggest_values(dimension, query, limit=limit)
    finally:
        storage.dispose()
    for value in values:
        print(value)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    if args.command == "aggregate":
        unknown = [name for name in args.dimensions if name not in _DIMENSION_CHOICES]
        if unknown:
            parser.error(f"Unknown dimension(s): {', '.join(unknown)}")
        return _run_aggregate(config, args.dimensions)
    if args.command == "load":
        return _run_load(config, args.path)
    if args.command == "show":
        return _run_show(config, args.dimension, args.value)
    if args.command == "suggest":
        return _run_suggest(config, args.dimension, args.query, args.limit)
    parser.error(f"Unknown command {args.command}")
    return 2


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
