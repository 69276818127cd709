"""
Logging configuration for the persistence engine.

Provides structured logging with different levels for development, testing, and production.
Configures formatters, handlers, and loggers for the store, services and admin API.
"""

import logging
import logging.config
import os
import sys
from typing import Dict, Any


def get_log_level() -> str:
    """Get the log level from environment variables."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_logging_config() -> Dict[str, Any]:
    """
    Get the logging configuration dictionary.

    Returns a logging configuration that can be used with logging.config.dictConfig().
    Production output is JSON (python-json-logger) so the ``extra=`` context
    attached by the services survives into the log pipeline.
    """
    log_level = get_log_level()
    environment = os.getenv("ENVIRONMENT", "development").lower()

    if environment == "production":
        formatter_class = "pythonjsonlogger.jsonlogger.JsonFormatter"
        formatter_format = "%(asctime)s %(name)s %(levelname)s %(message)s"
    else:
        # Human-readable formatting for development/testing
        formatter_class = "logging.Formatter"
        formatter_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    app_logger = {
        "level": log_level,
        "handlers": ["console", "error_console"],
        "propagate": False,
    }

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "class": formatter_class,
                "format": formatter_format,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "class": formatter_class,
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "default",
                "stream": sys.stdout,
            },
            "error_console": {
                "class": "logging.StreamHandler",
                "level": "ERROR",
                "formatter": "detailed",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            # Application loggers
            "rpg": dict(app_logger),
            "rpg.database": dict(app_logger),
            "rpg.services": dict(app_logger),
            "rpg.api": dict(app_logger),
            # Third-party loggers
            "sqlalchemy.engine": {
                "level": "WARNING",  # Reduce SQLAlchemy verbosity
                "handlers": ["console"],
                "propagate": False,
            },
            "alembic": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console", "error_console"],
        },
    }

    return config


def setup_logging() -> None:
    """
    Configure logging for the application.

    This should be called once at application startup, before any other
    logging occurs.
    """
    config = get_logging_config()
    logging.config.dictConfig(config)

    logger = logging.getLogger("rpg.logging")
    logger.info(
        "Logging configured",
        extra={
            "log_level": get_log_level(),
            "environment": os.getenv("ENVIRONMENT", "development"),
        },
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given name.

    Args:
        name: The logger name, typically __name__ from the calling module

    Returns:
        A configured logger instance
    """
    # Ensure the logger name starts with 'rpg.' for proper hierarchy
    if not name.startswith("rpg."):
        if name.startswith("rpg_persistence.src."):
            # rpg_persistence.src.services.persistence_store -> rpg.services
            # rpg_persistence.src.db.migrations -> rpg.database
            parts = name.split(".")
            component = parts[2] if len(parts) >= 3 else ""
            if component in ("db", "models"):
                name = "rpg.database"
            elif component:
                name = f"rpg.{component}"
            else:
                name = "rpg"
        else:
            name = f"rpg.{name}"

    return logging.getLogger(name)
