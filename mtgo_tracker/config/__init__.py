"""Configuration for mtgo-tracker."""

from mtgo_tracker.config.logging_config import configure_logging
from mtgo_tracker.config.settings import Settings, get_settings

__all__ = ["Settings", "configure_logging", "get_settings"]
