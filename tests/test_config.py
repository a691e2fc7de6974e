"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from power_switch.config.manager import ConfigManager
from power_switch.config.schema import AppConfig, ThresholdsConfig


class TestAppConfig:
    def test_default_config_is_valid(self) -> None:
        config = AppConfig()
        assert config.thresholds.min_solar_for_switch == 13.0
        assert config.thresholds.solar_to_grid_threshold == 11.5
        assert config.thresholds.min_switch_interval_seconds == 10
        assert config.auto.settle_delay_seconds == 5.0
        assert config.store.backend == "memory"
        assert config.store.root == "system"

    def test_threshold_ordering(self) -> None:
        t = ThresholdsConfig()
        assert t.battery_to_grid_threshold < t.battery_min_voltage
        assert t.solar_to_grid_threshold < t.solar_min_for_operation < t.min_solar_for_switch
        assert t.critical_soc < t.low_soc

    def test_thresholds_are_frozen(self) -> None:
        t = ThresholdsConfig()
        with pytest.raises(ValidationError):
            t.hysteresis = 1.0

    def test_rejects_soc_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            ThresholdsConfig(critical_soc=120)

    def test_custom_values(self) -> None:
        config = AppConfig(
            thresholds={"hysteresis": 0.5},
            store={"backend": "mqtt", "mqtt": {"broker_host": "broker.local"}},
        )
        assert config.thresholds.hysteresis == 0.5
        assert config.store.mqtt.broker_host == "broker.local"
        assert config.store.mqtt.topic_prefix == "power_switch"


class TestConfigManager:
    def test_load_defaults_only(self, tmp_path: Path) -> None:
        defaults_file = tmp_path / "defaults.yaml"
        defaults_file.write_text("thresholds:\n  hysteresis: 0.4\n")
        mgr = ConfigManager(defaults_path=defaults_file, user_path=tmp_path / "user.yaml")
        config = mgr.load()
        assert config.thresholds.hysteresis == 0.4

    def test_user_overrides(self, tmp_path: Path) -> None:
        defaults_file = tmp_path / "defaults.yaml"
        defaults_file.write_text("store:\n  root: system\n  backend: memory\n")
        user_file = tmp_path / "user.yaml"
        user_file.write_text("store:\n  root: site_a\n")
        mgr = ConfigManager(defaults_path=defaults_file, user_path=user_file)
        config = mgr.load()
        assert config.store.root == "site_a"
        assert config.store.backend == "memory"

    def test_deep_merge(self) -> None:
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        override = {"a": {"b": 10}, "e": 5}
        result = ConfigManager._deep_merge(base, override)
        assert result == {"a": {"b": 10, "c": 2}, "d": 3, "e": 5}

    def test_save_user_config(self, tmp_path: Path) -> None:
        defaults_file = tmp_path / "defaults.yaml"
        defaults_file.write_text("dashboard:\n  port: 8080\n")
        user_file = tmp_path / "user.yaml"
        mgr = ConfigManager(defaults_path=defaults_file, user_path=user_file)
        mgr.load()
        config = mgr.save_user_config({"dashboard": {"port": 9090}})
        assert config.dashboard.port == 9090
        assert user_file.exists()

    def test_to_json(self, tmp_path: Path) -> None:
        defaults_file = tmp_path / "defaults.yaml"
        defaults_file.write_text("")
        mgr = ConfigManager(defaults_path=defaults_file, user_path=tmp_path / "u.yaml")
        mgr.load()
        assert '"min_solar_for_switch"' in mgr.to_json()

    def test_config_before_load_raises(self, tmp_path: Path) -> None:
        mgr = ConfigManager(defaults_path=tmp_path / "d.yaml", user_path=tmp_path / "u.yaml")
        with pytest.raises(RuntimeError):
            _ = mgr.config

    def test_repo_defaults_file_matches_models(self) -> None:
        defaults = Path(__file__).resolve().parent.parent / "config.defaults.yaml"
        mgr = ConfigManager(defaults_path=defaults, user_path=defaults.parent / "missing.yaml")
        assert mgr.load() == AppConfig()
