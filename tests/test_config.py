"""
Tests for configuration loading.
"""

from pathlib import Path

import pytest

from puff_sync.config import SyncConfig, load_config
from puff_sync.exceptions import ConfigError
from puff_sync.ledger import TrackingMode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep PUFF_SYNC_* variables from the developer's shell out of tests."""
    for key in [
        "PUFF_SYNC_SERVER_URL",
        "PUFF_SYNC_DATA_DIR",
        "PUFF_SYNC_RETENTION_DAYS",
        "PUFF_SYNC_INTERVAL_S",
        "PUFF_SYNC_RUN_TIMEOUT_S",
        "PUFF_SYNC_CONNECT_TIMEOUT_S",
        "PUFF_SYNC_AUTO_RECONNECT",
        "PUFF_SYNC_TRACKING_MODE",
        "PUFF_SYNC_DAILY_PUFF_LIMIT",
    ]:
        monkeypatch.delenv(key, raising=False)


class TestSyncConfig:
    def test_defaults(self):
        config = SyncConfig()

        assert config.server_url == "ws://localhost:3000"
        assert config.retention_days == 30
        assert config.sync_interval_s == 10.0
        assert config.tracking_mode is TrackingMode.VAPING

    def test_paths(self, temp_dir: Path):
        config = SyncConfig(data_dir=temp_dir)

        assert config.ledger_path == temp_dir / "puffs.jsonl"
        assert config.token_path == temp_dir / ".auth-token"

    @pytest.mark.parametrize(
        "server_url,http_url",
        [
            ("ws://localhost:3000", "http://localhost:3000"),
            ("wss://sync.example.com/", "https://sync.example.com"),
            ("https://sync.example.com", "https://sync.example.com"),
        ],
    )
    def test_http_url(self, server_url: str, http_url: str):
        assert SyncConfig(server_url=server_url).http_url == http_url

    def test_tracking_mode_from_string(self):
        assert SyncConfig(tracking_mode="Cigarettes").tracking_mode is TrackingMode.CIGARETTES

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"server_url": ""}, "server_url"),
            ({"retention_days": 0}, "retention_days"),
            ({"sync_interval_s": 0}, "sync_interval_s"),
            ({"run_timeout_s": -1}, "run_timeout_s"),
            ({"initial_backoff_ms": 500, "max_backoff_ms": 100}, "max_backoff_ms"),
            ({"backoff_multiplier": 0.5}, "backoff_multiplier"),
            ({"tracking_mode": "snuff"}, "tracking_mode"),
            ({"puffs_per_vape": 0}, "puffs_per_vape"),
            ({"daily_puff_limit": 0}, "daily_puff_limit"),
            ({"vape_cost": -1}, "vape_cost"),
        ],
    )
    def test_invalid_values(self, kwargs: dict, field: str):
        with pytest.raises(ConfigError) as exc_info:
            SyncConfig(**kwargs)
        assert exc_info.value.field == field

    @pytest.mark.parametrize(
        "data,field",
        [
            ({"retention_days": "thirty"}, "retention_days"),
            ({"retention_days": 2.5}, "retention_days"),
            ({"retention_days": True}, "retention_days"),
            ({"sync_interval_s": [10]}, "sync_interval_s"),
            ({"run_timeout_s": "nan"}, "run_timeout_s"),
            ({"vape_cost": None}, "vape_cost"),
            ({"auto_reconnect": 3}, "auto_reconnect"),
        ],
    )
    def test_wrong_types_raise_config_error(self, data: dict, field: str):
        """Values of the wrong type are reported by field, never as a bare TypeError."""
        with pytest.raises(ConfigError) as exc_info:
            SyncConfig.from_dict(data)
        assert exc_info.value.field == field

    def test_numeric_strings_are_converted(self):
        config = SyncConfig.from_dict({"retention_days": "14", "sync_interval_s": "2.5", "daily_puff_limit": 20.0})

        assert config.retention_days == 14
        assert config.sync_interval_s == 2.5
        assert config.daily_puff_limit == 20
        assert isinstance(config.daily_puff_limit, int)

    def test_user_settings(self):
        config = SyncConfig(vape_cost=8.0, puffs_per_vape=400, daily_puff_limit=15, tracking_mode="cigarettes")
        settings = config.user_settings

        assert settings.vape_cost == 8.0
        assert settings.puffs_per_vape == 400
        assert settings.monthly_spending == 50.0
        assert settings.daily_puff_limit == 15
        assert settings.tracking_mode is TrackingMode.CIGARETTES

    def test_from_dict_ignores_unknown_keys(self):
        config = SyncConfig.from_dict({"server_url": "ws://a", "colour": "blue"})
        assert config.server_url == "ws://a"


class TestLoadConfig:
    def test_missing_file_uses_defaults(self, temp_dir: Path):
        config = load_config(temp_dir / "missing.yaml")
        assert config.server_url == "ws://localhost:3000"

    def test_file_layer(self, temp_dir: Path):
        path = temp_dir / "settings.yaml"
        path.write_text("sync:\n  server_url: wss://sync.example.com\n  retention_days: 14\n")

        config = load_config(path)

        assert config.server_url == "wss://sync.example.com"
        assert config.retention_days == 14

    def test_env_wins_over_file(self, temp_dir: Path, monkeypatch):
        path = temp_dir / "settings.yaml"
        path.write_text("sync:\n  retention_days: 14\n  sync_interval_s: 5\n")
        monkeypatch.setenv("PUFF_SYNC_RETENTION_DAYS", "7")
        monkeypatch.setenv("PUFF_SYNC_AUTO_RECONNECT", "no")

        config = load_config(path)

        assert config.retention_days == 7
        assert config.sync_interval_s == 5
        assert config.auto_reconnect is False

    def test_env_daily_puff_limit(self, temp_dir: Path, monkeypatch):
        monkeypatch.setenv("PUFF_SYNC_DAILY_PUFF_LIMIT", "12")

        assert load_config(temp_dir / "missing.yaml").daily_puff_limit == 12

    def test_overrides_win_and_none_is_ignored(self, temp_dir: Path, monkeypatch):
        monkeypatch.setenv("PUFF_SYNC_SERVER_URL", "ws://from-env")

        config = load_config(temp_dir / "missing.yaml", server_url="ws://explicit", data_dir=None)

        assert config.server_url == "ws://explicit"

    def test_invalid_env_number(self, temp_dir: Path, monkeypatch):
        monkeypatch.setenv("PUFF_SYNC_INTERVAL_S", "often")

        with pytest.raises(ConfigError):
            load_config(temp_dir / "missing.yaml")

    def test_invalid_yaml(self, temp_dir: Path):
        path = temp_dir / "settings.yaml"
        path.write_text("sync: [unclosed\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_sync_section_must_be_mapping(self, temp_dir: Path):
        path = temp_dir / "settings.yaml"
        path.write_text("sync: 3\n")

        with pytest.raises(ConfigError):
            load_config(path)
