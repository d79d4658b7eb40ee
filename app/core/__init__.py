"""
Core module initialization.
Exports configuration and logging utilities.
"""

from app.core.config import get_settings, Settings, EnvironmentMode, StoreBackend

__all__ = ["get_settings", "Settings", "EnvironmentMode", "StoreBackend"]
