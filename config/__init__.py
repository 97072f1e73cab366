"""Configuration module."""

from config.settings import (
    settings,
    Settings,
    OddsAPISettings,
    SchedulerSettings,
    DetectionSettings,
    ServerSettings,
)

__all__ = [
    "settings",
    "Settings",
    "OddsAPISettings",
    "SchedulerSettings",
    "DetectionSettings",
    "ServerSettings",
]
