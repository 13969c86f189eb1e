"""Logging configuration and utilities using Loguru.

This module provides centralized logging setup for TuneBridge, including
structured logging with Loguru and the error handling decorator used at
external API boundaries.

Public API:
----------
setup_loguru_logger(verbose: bool = False) -> None
    Configure Loguru logger for the application

get_logger(name: str) -> Logger
    Get a context-aware logger for your module
    Usage: logger = get_logger(__name__)

log_startup_info() -> None
    Log system configuration at startup

@resilient_operation(operation_name: str)
    Decorator for logging errors in external API calls
    Usage: @resilient_operation("spotify_get_playlist")
"""

import functools
from pathlib import Path
import sys
from typing import Any

from loguru import logger

from .settings import settings

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def setup_loguru_logger(verbose: bool = False) -> None:
    """Configure Loguru logger for the application.

    Args:
        verbose: Enable verbose logging with debug level and detailed tracebacks

    Note:
        - Removes default logger and sets up console and file handlers
        - Console format is colorized and simplified
        - File format is JSON structured with rotation and retention
    """
    logger.remove()

    log_file_path = Path(settings.logging.log_file)
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

    # Add contextual info to all log records
    logger.configure(extra={"service": "tunebridge", "module": "root"})

    # -------------------------------------------------------------------------
    # Console Handler
    # -------------------------------------------------------------------------
    console_level = "DEBUG" if verbose else settings.logging.console_level
    logger.add(
        sink=sys.stderr,
        level=console_level,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[service]}</cyan> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:"
            "<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
        backtrace=verbose,
        diagnose=verbose,
    )

    # -------------------------------------------------------------------------
    # File Handler
    # -------------------------------------------------------------------------
    logger.add(
        sink=str(log_file_path),
        level=settings.logging.file_level,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {process}:{thread} | {extra[service]} | {extra[module]} | {name}:{function}:{line} | {message}",
        rotation="10 MB",
        retention="1 week",
        compression="zip",
        backtrace=True,
        diagnose=True,
        enqueue=not settings.logging.real_time_debug,
        catch=True,
        serialize=True,
    )


# =============================================================================
# LOGGER FACTORY
# =============================================================================


def get_logger(name: str) -> Any:  # Use Any for Loguru logger type
    """Get a pre-configured logger instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Loguru logger bound with module and service context

    Example:
        ```python
        logger = get_logger(__name__).bind(service="spotify")
        logger.info("Fetched playlist", playlist_id="37i9dQZF1DX")
        ```
    """
    return logger.bind(
        module=name,
        service="tunebridge",
    )


# =============================================================================
# STARTUP LOGGING
# =============================================================================


def log_startup_info() -> None:
    """Log application configuration on startup.

    Credentials are masked; everything else is logged at debug level.
    """
    local_logger = get_logger(__name__)
    separator = "=" * 50

    local_logger.info("{}", separator)
    local_logger.info("TuneBridge playlist transfer engine")
    local_logger.info("{}", separator)

    local_logger.debug("Configuration:")
    config_dict = settings.model_dump()
    for section_name, section_values in config_dict.items():
        if isinstance(section_values, dict):
            local_logger.debug("  {}:", section_name.upper())
            for key, value in section_values.items():
                if section_name == "credentials" and value:
                    value = "***"
                local_logger.debug("    {}: {}", key.upper(), value)
        else:
            local_logger.debug("  {}: {}", section_name.upper(), section_values)


# =============================================================================
# ERROR HANDLING DECORATORS
# =============================================================================


def resilient_operation(operation_name=None):
    """Decorator for service boundary operations with standardized error logging.

    Use on external API calls so failures are logged once with the operation
    name before being re-raised to the caller.

    Args:
        operation_name: Optional name for the operation (defaults to function name)

    Example:
        >>> @resilient_operation("spotify_get_playlist")
        >>> async def get_playlist(self, playlist_id):
        >>>     ...
    """

    def decorator(func):
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                logger.bind(
                    operation=op_name, error_type=type(e).__name__
                ).warning("Error in {}: {}", op_name, str(e))
                raise

        return wrapper

    return decorator
