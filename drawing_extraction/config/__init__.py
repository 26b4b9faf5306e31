"""
Configuration module for the drawing extraction engine.

Provides centralized configuration management using Pydantic Settings,
environment variable loading, and structured logging setup.
"""

from drawing_extraction.config.logging_config import configure_logging, get_logger, page_context
from drawing_extraction.config.settings import (
    EnsembleModel,
    Environment,
    Settings,
    get_settings,
)


__all__ = [
    "Settings",
    "get_settings",
    "Environment",
    "EnsembleModel",
    "configure_logging",
    "get_logger",
    "page_context",
]
