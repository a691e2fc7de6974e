"""Configuration management for Power Switch."""

from power_switch.config.schema import AppConfig, ThresholdsConfig
from power_switch.config.manager import ConfigManager

__all__ = ["AppConfig", "ConfigManager", "ThresholdsConfig"]
