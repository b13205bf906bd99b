"""Persistence helpers built on SQLAlchemy."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable, Iterator, List, Optional

from sqlalchemy import Select, create_engine, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..core.types import AggregationResult, Dimension, SessionInfo, SpeechFilter, SpeechRecord
from .models import AggregationModel, Base, SpeechModel

# Upper bound for bound parameters in a single ``IN`` clause.
_ID_CHUNK_SIZE = 500


def _to_record(model: SpeechModel) -> SpeechRecord:
    return SpeechRecord(
        identifier=model.id,
        speaker=model.speaker,
        party=model.party,
        session=SessionInfo(index=model.session_index, title=model.session_title, date=model.session_date),
        text=model.text or "",
        nlp_results=model.nlp_results,
    )


def _conditions(speech_filter: SpeechFilter) -> List[Any]:
    conditions: List[Any] = []
    if speech_filter.session_index is not None:
        conditions.append(func.trim(SpeechModel.session_index) == speech_filter.session_index.strip())
    if speech_filter.speaker is not None:
        conditions.append(SpeechModel.speaker == speech_filter.speaker)
    return conditions


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Storage:
    """Wrapper around SQLAlchemy to read speeches and store summaries."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ensure_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    def ping(self) -> None:
        """Raise if the database cannot be reached."""

        with self._engine.connect() as connection:
            connection.execute(text("SELECT 1"))

    def dispose(self) -> None:
        """Dispose the underlying SQLAlchemy engine."""

        self._engine.dispose()

    # --- speeches -------------------------------------------------------
    def upsert_speeches(self, records: Iterable[SpeechRecord]) -> int:
        """Insert or replace ``records`` in a single transaction."""

        count = 0
        with self.session() as session:
            for record in records:
                session.merge(
                    SpeechModel(
                        id=record.identifier,
                        speaker=record.speaker,
                        party=record.party,
                        session_index=record.session.index,
                        session_title=record.session.title,
                        session_date=record.session.date,
                        text=record.text,
                        nlp_results=record.nlp_results,
                    )
                )
                count += 1
            session.flush()
        return count

    def count_speeches(self, speech_filter: Optional[SpeechFilter] = None) -> int:
        speech_filter = speech_filter or SpeechFilter()
        base = select(func.count()).select_from(SpeechModel).where(*_conditions(speech_filter))
        with self.session() as session:
            if speech_filter.speech_ids is None:
                return session.scalar(base) or 0
            total = 0
            for chunk in self._id_chunks(speech_filter):
                total += session.scalar(base.where(SpeechModel.id.in_(chunk))) or 0
            return total

    def iter_speeches(
        self,
        speech_filter: Optional[SpeechFilter] = None,
        *,
        batch_size: int = 500,
    ) -> Iterator[SpeechRecord]:
        """Stream the speeches matching ``speech_filter`` ordered by id."""

        speech_filter = speech_filter or SpeechFilter()
        base = select(SpeechModel).where(*_conditions(speech_filter)).order_by(SpeechModel.id)
        if speech_filter.speech_ids is None:
            yield from self._stream(base, batch_size)
            return
        for chunk in self._id_chunks(speech_filter):
            yield from self._stream(base.where(SpeechModel.id.in_(chunk)), batch_size)

    def distinct_session_indices(self) -> List[str]:
        stmt = select(SpeechModel.session_index).where(SpeechModel.session_index.is_not(None)).distinct()
        with self.session() as session:
            values = {value.strip() for value in session.scalars(stmt) if value and value.strip()}
        return sorted(values)

    def distinct_speakers(self) -> List[str]:
        stmt = select(SpeechModel.speaker).where(SpeechModel.speaker.is_not(None)).distinct()
        with self.session() as session:
            values = {value for value in session.scalars(stmt) if value and value.strip()}
        return sorted(values)

    def _stream(self, stmt: Select, batch_size: int) -> Iterator[SpeechRecord]:
        with self.session() as session:
            for model in session.scalars(stmt.execution_options(yield_per=max(1, batch_size))):
                yield _to_record(model)

    @staticmethod
    def _id_chunks(speech_filter: SpeechFilter) -> Iterator[List[str]]:
        identifiers = sorted(speech_filter.speech_ids or ())
        for start in range(0, len(identifiers), _ID_CHUNK_SIZE):
            yield identifiers[start : start + _ID_CHUNK_SIZE]

    # --- summaries ------------------------------------------------------
    def save_aggregation(self, result: AggregationResult) -> None:
        """Insert or replace the summary stored for ``result.key``.

        The whole document is written in one transaction.
        """

        document = result.to_document()
        with self.session() as session:
            stmt = select(AggregationModel).where(
                AggregationModel.type == result.key.dimension.value,
                AggregationModel.value == result.key.value,
            )
            model = session.scalars(stmt).first()
            if model is None:
                session.add(
                    AggregationModel(
                        type=result.key.dimension.value,
                        value=result.key.value,
                        speech_count=result.speech_count,
                        nlp_aggregation=document["nlpAggregation"],
                    )
                )
            else:
                model.speech_count = result.speech_count
                model.nlp_aggregation = document["nlpAggregation"]

    def get_aggregation(self, dimension: Dimension | str, value: str) -> Optional[AggregationResult]:
        dimension = Dimension.parse(dimension)
        stmt = select(AggregationModel).where(
            AggregationModel.type == dimension.value,
            AggregationModel.value == value,
        )
        with self.session() as session:
            model = session.scalars(stmt).first()
            if model is None:
                return None
            document = {
                "type": model.type,
                "value": model.value,
                "speechCount": model.speech_count,
                "nlpAggregation": model.nlp_aggregation,
            }
        return AggregationResult.from_document(document)

    def suggest_values(self, dimension: Dimension | str, query: str, *, limit: int = 10) -> List[str]:
        """Return stored values of ``dimension`` containing ``query``."""

        dimension = Dimension.parse(dimension)
        query = query.strip()
        if len(query) < 2:
            return []
        stmt = (
            select(AggregationModel.value)
            .where(
                AggregationModel.type == dimension.value,
                AggregationModel.value.ilike(f"%{_escape_like(query)}%", escape="\\"),
            )
            .order_by(AggregationModel.value)
            .limit(limit)
        )
        with self.session() as session:
            return list(session.scalars(stmt))

    def count_aggregations(self, dimension: Dimension | str | None = None) -> int:
        stmt = select(func.count()).select_from(AggregationModel)
        if dimension is not None:
            stmt = stmt.where(AggregationModel.type == Dimension.parse(dimension).value)
        with self.session() as session:
            return session.scalar(stmt) or 0


def create_storage(database_url: str, *, echo: bool = False) -> Storage:
    engine = create_engine(database_url, echo=echo, future=True)
    storage = Storage(engine)
    storage.ensure_schema()
    return storage


__all__ = ["Storage", "create_storage"]
