"""Score parsing and dominant topic resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import logging
import math

from ..core.types import SpeechRecord
from .annotations import topic_annotations

LOGGER = logging.getLogger(__name__)

# Running maximum of the dominant topic search. Speeches whose best mean is
# not above this value have no dominant topic.
DOMINANCE_FLOOR = 0.0


@dataclass(frozen=True, slots=True)
class Score:
    value: float


@dataclass(frozen=True, slots=True)
class Excluded:
    """A raw score that could not be interpreted as a number."""

    raw: Any
    reason: str


ScoreResult = Union[Score, Excluded]


def parse_score(raw: Any, *, context: str | None = None) -> ScoreResult:
    """Interpret ``raw`` as a relevance or sentiment score.

    Numbers are taken as they are and strings are parsed as decimal numbers.
    Every other shape is reported as :class:`Excluded` and must not be
    counted by the caller.
    """

    if isinstance(raw, bool):
        result: ScoreResult = Excluded(raw, "boolean value")
    elif isinstance(raw, (int, float)):
        value = float(raw)
        result = Score(value) if math.isfinite(value) else Excluded(raw, "non-finite number")
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            result = Excluded(raw, "not a decimal number")
        else:
            result = Score(value) if math.isfinite(value) else Excluded(raw, "non-finite number")
    elif raw is None:
        result = Excluded(raw, "missing value")
    else:
        result = Excluded(raw, f"unsupported type {type(raw).__name__}")

    if isinstance(result, Excluded):
        LOGGER.warning(
            "Ignoring unparseable score %r%s: %s",
            raw,
            f" for {context}" if context else "",
            result.reason,
        )
    return result


def topic_means(speech: SpeechRecord) -> Dict[str, float]:
    """Mean score per topic label, in the order the labels first appear."""

    scores: Dict[str, List[float]] = {}
    for annotation in topic_annotations(speech):
        parsed = parse_score(annotation.raw_score, context=f"topic {annotation.label!r} of speech {speech.identifier}")
        if isinstance(parsed, Excluded):
            continue
        scores.setdefault(annotation.label, []).append(parsed.value)
    return {label: sum(values) / len(values) for label, values in scores.items()}


def resolve_dominant_topic(speech: SpeechRecord) -> Optional[str]:
    """Return the label with the highest mean score or ``None``.

    On ties the label seen first wins. Only means strictly above
    :data:`DOMINANCE_FLOOR` qualify.
    """

    dominant: Optional[str] = None
    highest = DOMINANCE_FLOOR
    for label, mean in topic_means(speech).items():
        if mean > highest:
            highest = mean
            dominant = label
    return dominant


__all__ = [
    "DOMINANCE_FLOOR",
    "Excluded",
    "Score",
    "ScoreResult",
    "parse_score",
    "resolve_dominant_topic",
    "topic_means",
]
