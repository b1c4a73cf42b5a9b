"""
Run configuration.

All settings live in one JSON file, e.g.:

    {
      "sheet_id": "1jis4IowMXM72jJUlz3Yanv2YBu7ilcvU",
      "sheet_name": "Sheet1",
      "timezone": "Asia/Kolkata",
      "admin_token_file": "tokens/admin.json"
    }

The file is chosen by --config, else the TIMETABLE_SYNC_CONFIG environment
variable; without either the defaults below are used.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dateutil import tz as dateutil_tz

CONFIG_ENV = "TIMETABLE_SYNC_CONFIG"


def _default_data_dir() -> str:
    """
    Processed data lives next to the package unless data_dir is set.
    """
    return str(Path(__file__).resolve().parent / "data" / "processed")


class ConfigError(ValueError):
    """The configuration file is unreadable or holds invalid values."""


@dataclass
class SyncConfig:
    sheet_id: Optional[str] = None
    sheet_name: Optional[str] = "Sheet1"
    gid: str = "0"
    source_file: Optional[str] = None
    timezone: str = "Asia/Kolkata"
    data_dir: str = ""
    admin_token_file: Optional[str] = None
    batch_size: int = 5
    header_scan_rows: int = 40
    min_time_slots: int = 5
    day_block_rows: int = 4
    lookback_days: int = 0
    lookahead_days: int = 90
    run_timeout_seconds: float = 540
    color_id: str = "9"

    def __post_init__(self) -> None:
        if not self.data_dir:
            self.data_dir = _default_data_dir()
        self.validate()

    def validate(self) -> None:
        for name in ("batch_size", "header_scan_rows", "min_time_slots"):
            if int(getattr(self, name)) < 1:
                raise ConfigError(f"{name} must be a positive integer")
        if self.day_block_rows < 2 or self.day_block_rows % 2:
            raise ConfigError("day_block_rows must be an even number >= 2")
        if self.lookback_days < 0 or self.lookahead_days < 1:
            raise ConfigError("lookback_days must be >= 0 and lookahead_days >= 1")
        if self.run_timeout_seconds <= 0:
            raise ConfigError("run_timeout_seconds must be positive")
        if dateutil_tz.gettz(self.timezone) is None:
            raise ConfigError(f"Unknown timezone: {self.timezone!r}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: str | Path | None = None) -> SyncConfig:
    """
    Load SyncConfig from a JSON file (explicit path, else $TIMETABLE_SYNC_CONFIG, else defaults).

    Raises ConfigError for unreadable files, unknown keys and invalid values.
    """
    chosen = path if path is not None else os.environ.get(CONFIG_ENV)
    if not chosen:
        return SyncConfig()

    config_path = Path(chosen)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    known = {f.name for f in fields(SyncConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    try:
        return SyncConfig(**data)
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {e}") from e
