from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetsync.app_paths import base_directory
from sheetsync.logging_config import configure_logging
from sheetsync.settings import (
    DEFAULT_RANGE,
    SyncSettings,
    load_sync_settings,
    save_sync_settings,
    settings_from_dict,
)


def test_first_load_writes_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config" / "sync_settings.json"

    settings = load_sync_settings(str(path), environ={})

    assert path.exists()
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["default_range"] == DEFAULT_RANGE
    assert settings.default_strategy == "local"
    assert settings.key_fields == ["id", "student_id", "roll_number", "email"]


def test_values_are_clamped_and_strategies_validated() -> None:
    settings = settings_from_dict(
        {
            "history_limit": 5000,
            "sync_interval_seconds": 1,
            "max_retry_attempts": "three",
            "backoff_base_seconds": -2,
            "default_strategy": "Merge",
            "key_fields": ["roll_number", "", 5],
            "targets": [
                {"resource_id": "abc", "strategy": "bogus"},
                {"range": "no id"},
            ],
        }
    )

    assert settings.history_limit == 1000
    assert settings.sync_interval_seconds == 10
    assert settings.max_retry_attempts == SyncSettings().max_retry_attempts
    assert settings.backoff_base_seconds == 0.0
    assert settings.default_strategy == "merge"
    assert settings.key_fields == ["roll_number"]
    assert len(settings.targets) == 1
    assert settings.targets[0].strategy == "local"
    assert settings.targets[0].range == DEFAULT_RANGE


def test_environment_overrides_file_values(tmp_path: Path) -> None:
    path = tmp_path / "sync_settings.json"
    save_sync_settings(SyncSettings(spreadsheet_id="from-file"), str(path))

    settings = load_sync_settings(
        str(path),
        environ={"SHEETSYNC_SPREADSHEET_ID": "from-env", "SHEETSYNC_SYNC_INTERVAL": "120"},
    )

    assert settings.spreadsheet_id == "from-env"
    assert settings.sync_interval_seconds == 120


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "sync_settings.json"
    path.write_text("{not json", encoding="utf-8")

    settings = load_sync_settings(str(path), environ={})

    assert settings.default_range == DEFAULT_RANGE


def test_save_and_reload_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "sync_settings.json"
    original = settings_from_dict(
        {
            "spreadsheet_id": "sheet",
            "default_strategy": "timestamp",
            "targets": [{"resource_id": "sheet", "range": "Roster!A:F", "local_path": "roster.json"}],
        }
    )

    save_sync_settings(original, str(path))
    reloaded = load_sync_settings(str(path), environ={})

    assert reloaded.to_json() == original.to_json()


def test_base_directory_prefers_override_then_platform_dirs(tmp_path: Path) -> None:
    assert base_directory({"SHEETSYNC_HOME": str(tmp_path)}) == tmp_path.resolve()
    assert base_directory({"XDG_DATA_HOME": str(tmp_path)}) == tmp_path.resolve() / "sheetsync"
    assert base_directory({}).name == ".sheetsync"


def test_configure_logging_installs_one_file_handler(tmp_path: Path) -> None:
    target = tmp_path / "logs" / "sync.log"
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        assert configure_logging(log_path=target) == target.resolve()
        configure_logging(log_path=target)
        added = [handler for handler in root.handlers if handler not in before]
        assert len(added) == 1
        logging.getLogger("sheetsync.test").warning("written")
        added[0].flush()
        assert "written" in target.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
