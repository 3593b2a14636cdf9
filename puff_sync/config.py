"""
Configuration for the puff sync client.

Settings come from three layers, later layers winning:
defaults, a YAML settings file, then environment variables.

Configuration in ~/.pufftrack/settings.yaml:

```yaml
sync:
  server_url: "ws://localhost:3000"
  data_dir: "~/.pufftrack"
  retention_days: 30
  sync_interval_s: 10
  run_timeout_s: 15
  tracking_mode: vaping
  vape_cost: 10.0
  puffs_per_vape: 600
  monthly_spending: 50.0
  daily_puff_limit: 30
```

Environment Variables:
    PUFF_SYNC_SERVER_URL: Sync server base URL
    PUFF_SYNC_DATA_DIR: Directory for the ledger and credential files
    PUFF_SYNC_RETENTION_DAYS: Days of history to keep locally
    PUFF_SYNC_INTERVAL_S: Seconds between reconciliation runs
    PUFF_SYNC_RUN_TIMEOUT_S: Hard timeout for one reconciliation run
    PUFF_SYNC_TRACKING_MODE: vaping or cigarettes
    PUFF_SYNC_DAILY_PUFF_LIMIT: Daily puff goal shown in stats
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .ledger.stats import UserSettings
from .ledger.types import TrackingMode

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".pufftrack"
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "settings.yaml"

_ENV_KEYS = {
    "PUFF_SYNC_SERVER_URL": "server_url",
    "PUFF_SYNC_DATA_DIR": "data_dir",
    "PUFF_SYNC_RETENTION_DAYS": "retention_days",
    "PUFF_SYNC_INTERVAL_S": "sync_interval_s",
    "PUFF_SYNC_RUN_TIMEOUT_S": "run_timeout_s",
    "PUFF_SYNC_CONNECT_TIMEOUT_S": "connect_timeout_s",
    "PUFF_SYNC_AUTO_RECONNECT": "auto_reconnect",
    "PUFF_SYNC_TRACKING_MODE": "tracking_mode",
    "PUFF_SYNC_DAILY_PUFF_LIMIT": "daily_puff_limit",
}

_INT_FIELDS = ("retention_days", "initial_backoff_ms", "max_backoff_ms", "puffs_per_vape", "daily_puff_limit")
_FLOAT_FIELDS = (
    "sync_interval_s",
    "run_timeout_s",
    "connect_timeout_s",
    "backoff_multiplier",
    "vape_cost",
    "monthly_spending",
)
_BOOL_FIELDS = ("sync_on_record", "auto_reconnect")


@dataclass
class SyncConfig:
    """Configuration for ledger, channel and reconciler."""

    server_url: str = "ws://localhost:3000"
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    # Ledger
    retention_days: int = 30
    tracking_mode: TrackingMode = TrackingMode.VAPING

    # Reconciliation
    sync_interval_s: float = 10.0
    run_timeout_s: float = 15.0
    sync_on_record: bool = True

    # Channel
    connect_timeout_s: float = 10.0
    auto_reconnect: bool = True
    initial_backoff_ms: int = 1000
    max_backoff_ms: int = 60000
    backoff_multiplier: float = 2.0

    # Stats
    vape_cost: float = 10.0
    puffs_per_vape: int = 600
    monthly_spending: float = 50.0
    daily_puff_limit: int = 30

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        for name in _INT_FIELDS:
            setattr(self, name, _as_number(name, getattr(self, name), int))
        for name in _FLOAT_FIELDS:
            setattr(self, name, _as_number(name, getattr(self, name), float))
        for name in _BOOL_FIELDS:
            setattr(self, name, _as_bool(name, getattr(self, name)))
        if isinstance(self.tracking_mode, str):
            try:
                self.tracking_mode = TrackingMode(self.tracking_mode.lower())
            except ValueError as e:
                raise ConfigError("tracking_mode", "must be vaping or cigarettes", self.tracking_mode) from e
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If any value is out of range
        """
        if not self.server_url:
            raise ConfigError("server_url", "must not be empty")
        if self.retention_days < 1:
            raise ConfigError("retention_days", "must be at least 1", str(self.retention_days))
        if self.sync_interval_s <= 0:
            raise ConfigError("sync_interval_s", "must be positive", str(self.sync_interval_s))
        if self.run_timeout_s <= 0:
            raise ConfigError("run_timeout_s", "must be positive", str(self.run_timeout_s))
        if self.connect_timeout_s <= 0:
            raise ConfigError("connect_timeout_s", "must be positive", str(self.connect_timeout_s))
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < self.initial_backoff_ms:
            raise ConfigError("max_backoff_ms", "must be >= initial_backoff_ms", str(self.max_backoff_ms))
        if self.backoff_multiplier < 1.0:
            raise ConfigError("backoff_multiplier", "must be >= 1.0", str(self.backoff_multiplier))
        if self.vape_cost < 0:
            raise ConfigError("vape_cost", "must not be negative", str(self.vape_cost))
        if self.monthly_spending < 0:
            raise ConfigError("monthly_spending", "must not be negative", str(self.monthly_spending))
        if self.puffs_per_vape < 1:
            raise ConfigError("puffs_per_vape", "must be at least 1", str(self.puffs_per_vape))
        if self.daily_puff_limit < 1:
            raise ConfigError("daily_puff_limit", "must be at least 1", str(self.daily_puff_limit))

    @property
    def http_url(self) -> str:
        """Base URL for the HTTP account endpoints."""
        url = self.server_url.rstrip("/")
        if url.startswith("wss://"):
            return "https://" + url[len("wss://") :]
        if url.startswith("ws://"):
            return "http://" + url[len("ws://") :]
        return url

    @property
    def user_settings(self) -> UserSettings:
        return UserSettings(
            vape_cost=self.vape_cost,
            puffs_per_vape=self.puffs_per_vape,
            monthly_spending=self.monthly_spending,
            daily_puff_limit=self.daily_puff_limit,
            tracking_mode=self.tracking_mode,
        )

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / "puffs.jsonl"

    @property
    def token_path(self) -> Path:
        return self.data_dir / ".auth-token"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create config from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown sync settings: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, path: Path | None = None) -> SyncConfig:
        """Create config from the `sync` section of a YAML settings file."""
        return cls.from_dict(_read_yaml_section(path or DEFAULT_CONFIG_PATH))

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Create config from environment variables."""
        return cls.from_dict(_env_overrides())


def _read_yaml_section(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        content = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError("settings_file", f"invalid YAML: {e}", str(path)) from e
    except OSError as e:
        raise ConfigError("settings_file", f"unreadable: {e}", str(path)) from e

    section = content.get("sync", {}) if isinstance(content, dict) else {}
    if not isinstance(section, dict):
        raise ConfigError("sync", "must be a mapping", str(path))
    return section


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_key, name in _ENV_KEYS.items():
        raw = os.environ.get(env_key)
        if raw is None:
            continue
        overrides[name] = raw
    return overrides


def _as_number(name: str, value: Any, kind: type) -> Any:
    """Convert YAML or environment values to int or float.

    Raises:
        ConfigError: For anything that is not a finite number of that kind
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(name, "not a number", str(value))
    try:
        number = float(value) if kind is float else _to_int(value)
    except ValueError as e:
        raise ConfigError(name, "not a number", str(value)) from e
    if kind is float and not math.isfinite(number):
        raise ConfigError(name, "not a number", str(value))
    return number


def _to_int(value: int | float | str) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{value} is not a whole number")
    return int(value)


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    raise ConfigError(name, "not a boolean", str(value))


def load_config(path: Path | None = None, **overrides: Any) -> SyncConfig:
    """Load config from defaults, the settings file and the environment.

    Args:
        path: Settings file. Defaults to ~/.pufftrack/settings.yaml
        **overrides: Explicit values that win over every other layer

    Returns:
        Validated SyncConfig
    """
    merged: dict[str, Any] = {}
    merged.update(_read_yaml_section(path or DEFAULT_CONFIG_PATH))
    merged.update(_env_overrides())
    merged.update({k: v for k, v in overrides.items() if v is not None})
    config = SyncConfig.from_dict(merged)
    logger.debug(f"Loaded sync config: server={config.server_url} data_dir={config.data_dir}")
    return config
