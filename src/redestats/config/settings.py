"""Application configuration helpers for the aggregation engine."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
import types
from typing import Any, Dict, Optional, Type, TypeVar, Union, get_args, get_origin, get_type_hints


_ENV_PREFIX = "REDESTATS_"

_DEFAULT_CONFIG_LOCATIONS = (
    Path("redestats.json"),
    Path.home() / ".config" / "redestats" / "config.json",
)


@dataclass(slots=True)
class StorageConfig:
    """Connection settings of the speech and summary database."""

    database_url: str = "sqlite:///redestats.db"
    echo_sql: bool = False


@dataclass(slots=True)
class AggregationConfig:
    """Tuning knobs of the aggregation runs."""

    max_workers: int = 4
    max_retries: int = 3
    retry_backoff: float = 0.5
    progress_interval: int = 1000
    batch_size: int = 500
    top_entities: int = 100

    def __post_init__(self) -> None:
        for name in ("max_workers", "max_retries", "progress_interval", "batch_size", "top_entities"):
            if getattr(self, name) < 1:
                raise ValueError(f"AggregationConfig.{name} must be at least 1")
        if self.retry_backoff < 0:
            raise ValueError("AggregationConfig.retry_backoff must not be negative")


@dataclass(slots=True)
class AppConfig:
    """High level application configuration."""

    storage: StorageConfig
    aggregation: AggregationConfig


def _load_from_env(prefix: str) -> Dict[str, Any]:
    """Load configuration entries for ``prefix`` from the environment."""

    data: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith(prefix):
            data[key.removeprefix(prefix).lower()] = value
    return data


def _merge_dict(target: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = target.copy()
    merged.update({k: v for k, v in updates.items() if v is not None})
    return merged


def _load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a JSON object")
    return data


T = TypeVar("T")


def _coerce_value(value: Any, annotation: Any) -> Any:
    """Best-effort conversion of ``value`` to match ``annotation``."""

    if value is None:
        return None

    origin = get_origin(annotation)
    if origin in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]  # noqa: E721 - allow Optional
        if not args:
            return None
        last_error: Exception | None = None
        for candidate in args:
            try:
                return _coerce_value(value, candidate)
            except (TypeError, ValueError) as exc:
                last_error = exc
        raise ValueError(f"Cannot convert {value!r} to {annotation}") from last_error

    target_type = origin or annotation

    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in {"true", "1", "yes", "y", "on"}:
                return True
            if normalized in {"false", "0", "no", "n", "off"}:
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        raise ValueError(f"Cannot convert {value!r} to bool")

    if target_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, (float, str)):
            return int(float(value))
        raise ValueError(f"Cannot convert {value!r} to int")

    if target_type is float:
        if isinstance(value, (int, float, str)) and not isinstance(value, bool):
            return float(value)
        raise ValueError(f"Cannot convert {value!r} to float")

    if target_type is str:
        return value if isinstance(value, str) else str(value)

    return value


def _dataclass_from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
    """Create dataclass ``cls`` while coercing ``data`` to the proper types."""

    kwargs: Dict[str, Any] = {}
    type_hints = get_type_hints(cls)
    for field in fields(cls):
        if field.name not in data:
            continue
        try:
            annotation = type_hints.get(field.name, field.type)
            kwargs[field.name] = _coerce_value(data[field.name], annotation)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Invalid value for {cls.__name__}.{field.name}: {data[field.name]!r}"
            ) from exc
    return cls(**kwargs)


def resolve_config_path(explicit_path: Optional[Path] = None) -> Path:
    """Return the effective configuration file path.

    ``explicit_path`` wins when given. Otherwise the first existing default
    location is used, falling back to ``~/.config/redestats/config.json``.
    """

    if explicit_path:
        return explicit_path

    for candidate in _DEFAULT_CONFIG_LOCATIONS:
        if candidate.exists():
            return candidate

    return _DEFAULT_CONFIG_LOCATIONS[-1]


def load_config(explicit_path: Optional[Path] = None) -> AppConfig:
    """Create the application configuration.

    Defaults, an optional JSON file and ``REDESTATS_SECTION_FIELD``
    environment variables (e.g. ``REDESTATS_STORAGE_DATABASE_URL``) are
    merged in that order.
    """

    base = {
        "storage": asdict(StorageConfig()),
        "aggregation": asdict(AggregationConfig()),
    }

    file_data: Dict[str, Any] = {}
    if explicit_path:
        file_data = _load_config_file(explicit_path)
    else:
        for candidate in _DEFAULT_CONFIG_LOCATIONS:
            file_data = _load_config_file(candidate)
            if file_data:
                break

    storage_data = _merge_dict(
        _merge_dict(base["storage"], file_data.get("storage") or {}),
        _load_from_env(f"{_ENV_PREFIX}STORAGE_"),
    )
    aggregation_data = _merge_dict(
        _merge_dict(base["aggregation"], file_data.get("aggregation") or {}),
        _load_from_env(f"{_ENV_PREFIX}AGGREGATION_"),
    )

    return AppConfig(
        storage=_dataclass_from_dict(StorageConfig, storage_data),
        aggregation=_dataclass_from_dict(AggregationConfig, aggregation_data),
    )


def save_config(config: AppConfig, path: Optional[Path] = None) -> Path:
    """Persist ``config`` as JSON and return the target path."""

    target = resolve_config_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "storage": asdict(config.storage),
        "aggregation": asdict(config.aggregation),
    }
    with target.open("w", encoding="utf8") as fh:
        json.dump(data, fh, ensure_ascii=False, indent=2, sort_keys=True)
        fh.write("\n")
    return target


__all__ = [
    "AggregationConfig",
    "AppConfig",
    "StorageConfig",
    "load_config",
    "resolve_config_path",
    "save_config",
]
