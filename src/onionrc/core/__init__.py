"""
onionrc Core Module

Core configuration, settings, and utilities.
"""

from .config import (
    Settings,
    BuilderSettings,
    PathSettings,
    LogSettings,
    get_settings,
    get_project_root,
)
from .logging import setup_logging, get_logger

__all__ = [
    # Settings
    "Settings",
    "BuilderSettings",
    "PathSettings",
    "LogSettings",
    "get_settings",
    "get_project_root",
    # Logging
    "setup_logging",
    "get_logger",
]
