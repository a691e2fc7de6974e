"""Pydantic configuration models for all system settings."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ThresholdsConfig(BaseModel):
    """Auto-mode decision thresholds. Volts unless noted.

    Frozen: thresholds are fixed for the lifetime of a session.
    """

    model_config = ConfigDict(frozen=True)

    solar_min_voltage: float = 12.0  # Alert only: solar considered weak below this
    min_solar_for_switch: float = 13.0  # Solar must reach this before switching to it
    grid_to_solar_margin: float = 1.0  # Solar-over-battery margin to leave grid for solar
    solar_battery_margin: float = 0.5  # Solar-over-battery margin to leave battery for solar
    solar_to_grid_threshold: float = 11.5  # Below this solar is abandoned regardless of margin
    solar_min_for_operation: float = 12.5  # Minimum solar voltage to stay on solar
    battery_min_voltage: float = 11.5
    battery_to_grid_threshold: float = 11.0
    critical_soc: float = Field(20.0, ge=0.0, le=100.0)  # Percent
    low_soc: float = Field(30.0, ge=0.0, le=100.0)  # Percent
    hysteresis: float = Field(0.3, ge=0.0)
    data_timeout_seconds: float = Field(60.0, gt=0.0)
    min_switch_interval_seconds: float = Field(10.0, ge=0.0)


class AutoModeConfig(BaseModel):
    evaluation_interval_seconds: float = Field(1.0, gt=0.0)
    event_throttle_seconds: float = Field(1.0, ge=0.0)
    settle_delay_seconds: float = Field(5.0, ge=0.0)
    controller_timeout_seconds: float = Field(30.0, gt=0.0)
    refresh_delay_seconds: float = Field(0.5, ge=0.0)
    audit_enabled: bool = True


class FirebaseConfig(BaseModel):
    database_url: str = ""  # e.g. https://<project>-default-rtdb.firebaseio.com
    auth_token: str = ""  # Database secret or ID token, sent as ?auth=
    timeout_seconds: float = 10.0
    reconnect_delay_seconds: float = 5.0


class MQTTStoreConfig(BaseModel):
    broker_host: str = "localhost"
    broker_port: int = 1883
    username: str = ""
    password: str = ""
    topic_prefix: str = "power_switch"


class StoreConfig(BaseModel):
    backend: str = "memory"  # memory, firebase, mqtt
    root: str = "system"
    firebase: FirebaseConfig = FirebaseConfig()
    mqtt: MQTTStoreConfig = MQTTStoreConfig()


class AlertsConfig(BaseModel):
    max_alerts: int = Field(10, ge=1)
    max_notifications: int = Field(50, ge=1)
    controller_check_interval_seconds: float = Field(10.0, gt=0.0)
    data_check_interval_seconds: float = Field(30.0, gt=0.0)


class EnergyConfig(BaseModel):
    update_interval_seconds: float = Field(5.0, gt=0.0)
    save_interval_seconds: float = Field(60.0, gt=0.0)


class DashboardConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    sse_interval_seconds: float = 2.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: str = ""


class AppConfig(BaseModel):
    """Root configuration model containing all system settings."""

    thresholds: ThresholdsConfig = ThresholdsConfig()
    auto: AutoModeConfig = AutoModeConfig()
    store: StoreConfig = StoreConfig()
    alerts: AlertsConfig = AlertsConfig()
    energy: EnergyConfig = EnergyConfig()
    dashboard: DashboardConfig = DashboardConfig()
    logging: LoggingConfig = LoggingConfig()
