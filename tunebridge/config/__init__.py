"""Configuration module for TuneBridge.

This module provides a type-safe configuration system using Pydantic Settings
and the Loguru based logging helpers.

Public API:
----------
settings: Settings instance
    Pydantic settings object with nested configuration

get_logger(name: str) -> Logger
    Get a context-aware logger for your module

setup_loguru_logger(verbose: bool = False) -> None
    Configure Loguru logger for the application

resilient_operation(operation_name: str)
    Decorator for logging errors in external API calls

log_startup_info() -> None
    Log system configuration at startup

Usage:
------
```python
from tunebridge.config import settings, get_logger

logger = get_logger(__name__)
logger.info("Polling", interval=settings.scheduler.poll_interval)
```
"""

from .logging import (
    get_logger,
    log_startup_info,
    resilient_operation,
    setup_loguru_logger,
)
from .settings import Settings, settings

__all__ = [
    "Settings",
    "get_logger",
    "log_startup_info",
    "resilient_operation",
    "settings",
    "setup_loguru_logger",
]
