"""Conversion of exported speech documents into :class:`SpeechRecord` objects."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional
import json
import logging

from .types import SessionInfo, SpeechRecord

LOGGER = logging.getLogger(__name__)

_BUNDLE_KEY = "nlpResults"


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _extract_bundle(document: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    bundle = document.get(_BUNDLE_KEY)
    result: Optional[Dict[str, Any]] = dict(bundle) if isinstance(bundle, Mapping) else None
    # Some exports flatten the bundle into dotted top-level keys.
    prefix = f"{_BUNDLE_KEY}."
    for key, value in document.items():
        if isinstance(key, str) and key.startswith(prefix):
            if result is None:
                result = {}
            result.setdefault(key.removeprefix(prefix), value)
    return result


def speech_from_document(document: Mapping[str, Any]) -> SpeechRecord:
    """Build a :class:`SpeechRecord` from a raw speech document."""

    if not isinstance(document, Mapping):
        raise ValueError(f"Speech document must be a JSON object, got {type(document).__name__}")
    raw_identifier = document.get("_id") or document.get("id")
    if raw_identifier is None or str(raw_identifier).strip() == "":
        raise ValueError("Speech document did not contain an identifier")
    if isinstance(raw_identifier, Mapping) and "$oid" in raw_identifier:
        raw_identifier = raw_identifier["$oid"]

    protocol = document.get("protocol")
    if not isinstance(protocol, Mapping):
        protocol = {}

    return SpeechRecord(
        identifier=str(raw_identifier),
        speaker=_optional_str(document.get("speaker")),
        party=_optional_str(document.get("party")),
        session=SessionInfo(
            index=_optional_str(protocol.get("index")),
            title=_optional_str(protocol.get("title")),
            date=_optional_str(protocol.get("date")),
        ),
        text=str(document.get("text") or ""),
        nlp_results=_extract_bundle(document),
    )


def read_speech_documents(path: Path) -> Iterator[Any]:
    """Yield the speech documents stored in ``path``.

    Both a single JSON array and JSON lines (one document per line) are
    accepted. Entries are yielded as decoded, callers validate their shape.
    """

    with path.open("r", encoding="utf8") as fh:
        head = fh.read(1)
        while head and head.isspace():
            head = fh.read(1)
        fh.seek(0)
        if head == "[":
            data = json.load(fh)
            for document in data:
                yield document
            return
        for line_number, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{line_number}: invalid JSON document") from exc


__all__ = ["read_speech_documents", "speech_from_document"]
