"""Configuration module."""

from config.settings import Settings, settings
from config.monitors import (
    ConfigError,
    DepthConfig,
    MonitorEntry,
    MonitorsConfig,
    SyntheticMarket,
    TradeSilenceConfig,
    load_monitor_config,
)

__all__ = [
    "Settings",
    "settings",
    "ConfigError",
    "DepthConfig",
    "MonitorEntry",
    "MonitorsConfig",
    "SyntheticMarket",
    "TradeSilenceConfig",
    "load_monitor_config",
]
