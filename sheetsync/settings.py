"""Configuration for the synchronisation service."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sheetsync import app_paths
from sheetsync.conflicts import DEFAULT_TIMESTAMP_FIELDS, ResolutionStrategy
from sheetsync.records import DEFAULT_KEY_FIELDS

logger = logging.getLogger(__name__)


SYNC_SETTINGS_PATH = str(app_paths.data_path("sync_settings.json"))
DEFAULT_CREDENTIALS_PATH = os.getenv(
    "SHEETSYNC_CREDENTIALS_PATH",
    str(app_paths.data_path("service_account.json")),
)
DEFAULT_SPREADSHEET_ID = os.getenv("SHEETSYNC_SPREADSHEET_ID", "")
DEFAULT_RANGE = "Sheet1!A:Z"


@dataclass
class SyncTargetConfig:
    """A ``(spreadsheet, range)`` pair resynchronised by the scheduler."""

    resource_id: str
    range: str = DEFAULT_RANGE
    target_label: str = "records"
    strategy: str = ResolutionStrategy.LOCAL.value
    local_path: Optional[str] = None

    def to_json(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "range": self.range,
            "target_label": self.target_label,
            "strategy": self.strategy,
            "local_path": self.local_path,
        }


@dataclass
class SyncSettings:
    spreadsheet_id: str = DEFAULT_SPREADSHEET_ID
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    default_range: str = DEFAULT_RANGE
    default_strategy: str = ResolutionStrategy.LOCAL.value
    key_fields: List[str] = field(default_factory=lambda: list(DEFAULT_KEY_FIELDS))
    timestamp_fields: List[str] = field(default_factory=lambda: list(DEFAULT_TIMESTAMP_FIELDS))
    history_limit: int = 100
    history_path: str = field(default_factory=lambda: str(app_paths.data_path("history.sqlite3")))
    snapshot_dir: str = field(default_factory=lambda: str(app_paths.SNAPSHOT_DIR))
    sync_interval_seconds: int = 1800
    max_retry_attempts: int = 5
    backoff_base_seconds: float = 1.0
    request_timeout_seconds: float = 30.0
    targets: List[SyncTargetConfig] = field(default_factory=list)

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "credential_path": self.credential_path,
            "default_range": self.default_range,
            "default_strategy": self.default_strategy,
            "key_fields": list(self.key_fields),
            "timestamp_fields": list(self.timestamp_fields),
            "history_limit": self.history_limit,
            "history_path": self.history_path,
            "snapshot_dir": self.snapshot_dir,
            "sync_interval_seconds": self.sync_interval_seconds,
            "max_retry_attempts": self.max_retry_attempts,
            "backoff_base_seconds": self.backoff_base_seconds,
            "request_timeout_seconds": self.request_timeout_seconds,
            "targets": [target.to_json() for target in self.targets],
        }


_INT_BOUNDS: Mapping[str, tuple[int, int]] = {
    "history_limit": (1, 1000),
    "sync_interval_seconds": (10, 86400),
    "max_retry_attempts": (1, 10),
}

_FLOAT_BOUNDS: Mapping[str, tuple[float, float]] = {
    "backoff_base_seconds": (0.0, 60.0),
    "request_timeout_seconds": (1.0, 600.0),
}

_ENV_OVERRIDES: Mapping[str, str] = {
    "SHEETSYNC_SPREADSHEET_ID": "spreadsheet_id",
    "SHEETSYNC_CREDENTIALS_PATH": "credential_path",
    "SHEETSYNC_RANGE": "default_range",
    "SHEETSYNC_STRATEGY": "default_strategy",
    "SHEETSYNC_SYNC_INTERVAL": "sync_interval_seconds",
    "SHEETSYNC_TIMEOUT": "request_timeout_seconds",
}


def _clamp_int(value: Any, default: int, bounds: tuple[int, int]) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(bounds[0], min(bounds[1], number))


def _clamp_float(value: Any, default: float, bounds: tuple[float, float]) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(bounds[0], min(bounds[1], number))


def _string_list(value: Any, default: List[str]) -> List[str]:
    if not isinstance(value, list):
        return list(default)
    cleaned = [entry.strip() for entry in value if isinstance(entry, str) and entry.strip()]
    return cleaned or list(default)


def _parse_targets(value: Any) -> List[SyncTargetConfig]:
    targets: List[SyncTargetConfig] = []
    if not isinstance(value, list):
        return targets
    for entry in value:
        if not isinstance(entry, Mapping) or not entry.get("resource_id"):
            continue
        strategy = str(entry.get("strategy") or ResolutionStrategy.LOCAL.value)
        try:
            strategy = ResolutionStrategy.parse(strategy).value
        except ValueError:
            logger.warning("Ignoring unknown strategy %r for target %s", strategy, entry.get("resource_id"))
            strategy = ResolutionStrategy.LOCAL.value
        targets.append(
            SyncTargetConfig(
                resource_id=str(entry["resource_id"]),
                range=str(entry.get("range") or DEFAULT_RANGE),
                target_label=str(entry.get("target_label") or "records"),
                strategy=strategy,
                local_path=str(entry["local_path"]) if entry.get("local_path") else None,
            )
        )
    return targets


def settings_from_dict(data: Mapping[str, Any]) -> SyncSettings:
    defaults = SyncSettings()
    settings = SyncSettings()
    for key in ("spreadsheet_id", "credential_path", "default_range", "history_path", "snapshot_dir"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            setattr(settings, key, value.strip())

    strategy = data.get("default_strategy")
    if isinstance(strategy, str):
        try:
            settings.default_strategy = ResolutionStrategy.parse(strategy).value
        except ValueError:
            logger.warning("Unknown default strategy %r; using %s", strategy, defaults.default_strategy)

    settings.key_fields = _string_list(data.get("key_fields"), defaults.key_fields)
    settings.timestamp_fields = _string_list(data.get("timestamp_fields"), defaults.timestamp_fields)
    for key, bounds in _INT_BOUNDS.items():
        if key in data:
            setattr(settings, key, _clamp_int(data[key], getattr(defaults, key), bounds))
    for key, bounds in _FLOAT_BOUNDS.items():
        if key in data:
            setattr(settings, key, _clamp_float(data[key], getattr(defaults, key), bounds))
    settings.targets = _parse_targets(data.get("targets"))
    return settings


def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    for env_var, key in _ENV_OVERRIDES.items():
        value = environ.get(env_var)
        if value:
            data[key] = value
    return data


def load_sync_settings(
    path: str = SYNC_SETTINGS_PATH,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> SyncSettings:
    """Load settings from ``path``, writing the defaults there on first use."""

    if not os.path.exists(path):
        save_sync_settings(SyncSettings(), path)
        data: Dict[str, Any] = {}
    else:
        with open(path, "r", encoding="utf-8") as handle:
            try:
                loaded = json.load(handle)
            except json.JSONDecodeError as exc:
                logger.warning("Settings file %s is not valid JSON (%s); using defaults", path, exc)
                loaded = {}
        data = dict(loaded) if isinstance(loaded, Mapping) else {}

    _apply_env_overrides(data, os.environ if environ is None else environ)
    return settings_from_dict(data)


def save_sync_settings(settings: SyncSettings, path: str = SYNC_SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DEFAULT_CREDENTIALS_PATH",
    "DEFAULT_RANGE",
    "DEFAULT_SPREADSHEET_ID",
    "SYNC_SETTINGS_PATH",
    "SyncSettings",
    "SyncTargetConfig",
    "load_sync_settings",
    "save_sync_settings",
    "settings_from_dict",
]
