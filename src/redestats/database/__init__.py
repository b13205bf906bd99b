"""Database integration components."""
from __future__ import annotations

from .models import AggregationModel, Base, SpeechModel
from .storage import Storage, create_storage

__all__ = [
    "AggregationModel",
    "Base",
    "SpeechModel",
    "Storage",
    "create_storage",
]
