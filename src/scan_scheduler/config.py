"""Configuration for the scan scheduler.

Usage:
    from scan_scheduler.config import Config, SchedulerSettings

    # Access config values
    database_url = Config.SCAN_QUEUE_DATABASE_URL

    # Settings handed to every dispatch tick and scan handler
    settings = SchedulerSettings.from_config()
"""

import os
from typing import Self

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_MAX_ACTIVE_SCAN_HANDLERS = 3


class Config:
    """Centralized environment configuration for the scheduler daemon.

    All configuration values are class variables that can be accessed directly.
    Values are loaded from environment variables with sensible defaults.

    Example:
        from scan_scheduler.config import Config

        print(Config.SCAN_QUEUE_DATABASE_URL)
        print(Config.MAX_ACTIVE_SCAN_HANDLERS)
    """

    # ========================================================================
    # Helper methods (static)
    # ========================================================================

    @staticmethod
    def _get_value(key: str, default: str) -> str:
        """Get configuration value from environment with optional default."""
        return os.getenv(key, default)

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer configuration value."""
        return int(os.getenv(key, str(default)))

    @staticmethod
    def _get_float(key: str, default: float) -> float:
        """Get float configuration value."""
        return float(os.getenv(key, str(default)))

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Get boolean configuration value."""
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    # ========================================================================
    # Database Configuration
    # ========================================================================

    SCAN_QUEUE_DATABASE_URL: str = _get_value("SCAN_QUEUE_DATABASE_URL", "sqlite:///scan_queue.db")

    # ========================================================================
    # Scan Queue Configuration
    # ========================================================================

    LOG_LEVEL: str = _get_value("LOG_LEVEL", "INFO")

    USE_SCAN_QUEUE: bool = _get_bool("USE_SCAN_QUEUE", False)
    MAX_ACTIVE_SCAN_HANDLERS: int = _get_int(
        "MAX_ACTIVE_SCAN_HANDLERS", DEFAULT_MAX_ACTIVE_SCAN_HANDLERS
    )
    # Seconds a handler runs before it yields to waiting scans
    SCAN_HANDLER_ACTIVE_TIME: int = _get_int("SCAN_HANDLER_ACTIVE_TIME", 0)
    SCAN_HANDLER_POLL_INTERVAL: float = _get_float("SCAN_HANDLER_POLL_INTERVAL", 5.0)
    DISPATCH_INTERVAL: float = _get_float("DISPATCH_INTERVAL", 10.0)

    # ========================================================================
    # MQTT Configuration
    # ========================================================================

    BROADCAST_TYPE: str = _get_value("BROADCAST_TYPE", "mqtt")
    MQTT_BROKER: str = _get_value("MQTT_BROKER", "localhost")
    MQTT_PORT: int = _get_int("MQTT_PORT", 1883)
    MQTT_TOPIC: str = _get_value("MQTT_TOPIC", "scans/queue")


class SchedulerSettings(BaseModel):
    """Scheduling settings passed by reference into every tick and handler.

    Set at startup and changed only by administrative code. Negative values
    are clamped to 0 on construction and on assignment; a ceiling of 0
    means unlimited and an active time of 0 means no grace period.
    """

    model_config = ConfigDict(validate_assignment=True)

    use_scan_queue: bool = False
    max_active_scan_handlers: int = DEFAULT_MAX_ACTIVE_SCAN_HANDLERS
    scan_handler_active_time: int = 0
    scan_handler_poll_interval: float = 5.0

    @field_validator("max_active_scan_handlers", "scan_handler_active_time")
    @classmethod
    def clamp_non_negative(cls, v: int) -> int:
        return v if v > 0 else 0

    @field_validator("scan_handler_poll_interval")
    @classmethod
    def clamp_poll_interval(cls, v: float) -> float:
        return v if v > 0 else 0.0

    @classmethod
    def from_config(cls) -> Self:
        """Build settings from the environment-loaded Config values."""
        return cls(
            use_scan_queue=Config.USE_SCAN_QUEUE,
            max_active_scan_handlers=Config.MAX_ACTIVE_SCAN_HANDLERS,
            scan_handler_active_time=Config.SCAN_HANDLER_ACTIVE_TIME,
            scan_handler_poll_interval=Config.SCAN_HANDLER_POLL_INTERVAL,
        )

    def under_pressure(self, queue_length: int) -> bool:
        """Whether more scans are queued than may run at once."""
        if not self.max_active_scan_handlers:
            return False
        return queue_length > self.max_active_scan_handlers
