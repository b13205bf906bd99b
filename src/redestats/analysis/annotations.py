"""Accessors for the NLP annotation bundle attached to a speech."""

from __future__ import annotations

from typing import Any, List, Mapping, Sequence

from ..core.types import NamedEntityAnnotation, SpeechRecord, TokenAnnotation, TopicAnnotation

_NESTED_BUNDLE_KEY = "nlpResults"


def _section(speech: SpeechRecord, name: str) -> Sequence[Any]:
    bundle = speech.nlp_results
    if not isinstance(bundle, Mapping):
        return ()
    value = bundle.get(name)
    if value is None:
        nested = bundle.get(_NESTED_BUNDLE_KEY)
        if isinstance(nested, Mapping):
            value = nested.get(name)
    if isinstance(value, (list, tuple)):
        return value
    return ()


def _optional_str(value: Any) -> str | None:
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return None
    return str(value)


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def topic_annotations(speech: SpeechRecord) -> List[TopicAnnotation]:
    annotations: List[TopicAnnotation] = []
    for entry in _section(speech, "topics"):
        label = _optional_str(entry.get("value")) if isinstance(entry, Mapping) else None
        if label is None:
            continue
        annotations.append(TopicAnnotation(label=label, raw_score=entry.get("score")))
    return annotations


def named_entities(speech: SpeechRecord) -> List[NamedEntityAnnotation]:
    annotations: List[NamedEntityAnnotation] = []
    for entry in _section(speech, "namedEntities"):
        if not isinstance(entry, Mapping):
            continue
        annotations.append(
            NamedEntityAnnotation(
                type=_optional_str(entry.get("type")),
                text=_optional_str(entry.get("text")),
                begin=_optional_int(entry.get("begin")),
                end=_optional_int(entry.get("end")),
            )
        )
    return annotations


def tokens(speech: SpeechRecord) -> List[TokenAnnotation]:
    annotations: List[TokenAnnotation] = []
    for entry in _section(speech, "tokens"):
        if not isinstance(entry, Mapping):
            continue
        pos = entry.get("pos")
        annotations.append(TokenAnnotation(text=_optional_str(entry.get("text")), pos=_optional_str(pos)))
    return annotations


def sentiment_values(speech: SpeechRecord) -> List[Any]:
    """Return the raw sentiment values of ``speech``.

    The first value is the score of the whole speech, every following value
    belongs to one sentence. Entries may be bare values or mappings carrying
    a ``sentiment`` field.
    """

    values: List[Any] = []
    for entry in _section(speech, "sentiment"):
        if isinstance(entry, Mapping):
            values.append(entry.get("sentiment"))
        else:
            values.append(entry)
    return values


__all__ = ["named_entities", "sentiment_values", "tokens", "topic_annotations"]
