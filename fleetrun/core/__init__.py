"""Core - configuration loading."""

from fleetrun.core.config import Config, DeviceConfig, ExecutionConfig, LoggingConfig

__all__ = ["Config", "DeviceConfig", "ExecutionConfig", "LoggingConfig"]
