"""Logging configuration for step2glb.

Provides consistent structured logging setup across the application.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, List

import structlog


def configure_logging(
    level: str = "INFO",
    enable_colors: bool = True,
    enable_json: bool = False,
    extra_processors: List[Any] | None = None,
) -> None:
    """Configure structured logging for step2glb.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        enable_colors: Enable colored output for console
        enable_json: Use JSON output format
        extra_processors: Additional structlog processors
    """
    numeric_level = LOG_LEVELS.get(level.upper())
    if numeric_level is None:
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
    ]

    if extra_processors:
        processors.extend(extra_processors)

    if enable_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=enable_colors and sys.stderr.isatty())
        )

    # Rich tables go to stdout; keep log lines on stderr
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def configure_preset(name: str, **overrides: Any) -> None:
    """Apply one of the ``CONFIGS`` presets.

    Keyword overrides replace preset values; ``None`` values are ignored.
    """
    try:
        preset = dict(CONFIGS[name])
    except KeyError:
        raise ValueError(f"Unknown logging preset: {name}") from None
    preset.update({k: v for k, v in overrides.items() if v is not None})
    configure_logging(**preset)


LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

CONFIGS = {
    "development": {
        "level": "DEBUG",
        "enable_colors": True,
        "enable_json": False,
    },
    "production": {
        "level": "INFO",
        "enable_colors": False,
        "enable_json": True,
    },
    "cli": {
        "level": "WARNING",
        "enable_colors": True,
        "enable_json": False,
    },
}
