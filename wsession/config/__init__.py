"""Configuration entry points for wsession."""

from .settings import BACKPRESSURE_HIGH_WATER_BYTES, SessionSettings, get_settings

__all__ = ["BACKPRESSURE_HIGH_WATER_BYTES", "SessionSettings", "get_settings"]
