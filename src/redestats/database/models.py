"""SQLAlchemy models for speeches and precomputed summaries."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative SQLAlchemy base class."""


class SpeechModel(Base):
    """Database representation of an annotated speech."""

    __tablename__ = "speeches"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    speaker: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)
    party: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    session_index: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    session_title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    session_date: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    text: Mapped[str] = mapped_column(Text, default="")
    nlp_results: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON(none_as_null=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class AggregationModel(Base):
    """One precomputed summary per ``(type, value)`` pair."""

    __tablename__ = "aggregated_data"
    __table_args__ = (UniqueConstraint("type", "value", name="uq_aggregated_data_type_value"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(32), index=True)
    value: Mapped[str] = mapped_column(String(512))
    speech_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    nlp_aggregation: Mapped[Dict[str, Any]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


__all__ = ["AggregationModel", "Base", "SpeechModel"]
