"""Configuration helpers for the aggregation engine."""
from __future__ import annotations

from .settings import (
    AggregationConfig,
    AppConfig,
    StorageConfig,
    load_config,
    resolve_config_path,
    save_config,
)

__all__ = [
    "AggregationConfig",
    "AppConfig",
    "StorageConfig",
    "load_config",
    "resolve_config_path",
    "save_config",
]
