"""
Logging Configuration
====================

structlog on top of stdlib logging. Every event carries the service name and
environment; production renders JSON, other environments render for a console.
The upstream components log retries and backoff at DEBUG, so their level
follows the configured level while third-party libraries stay quieter.
"""

import logging
import logging.config
import sys
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from .settings import get_settings

if TYPE_CHECKING:
    from .settings import Settings

# Third-party loggers and the level they are held at.
LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "WARNING",
    "aiohttp": "WARNING",
    "pypdf": "ERROR",
    "PIL": "WARNING",
}


def service_context(settings: "Settings"):
    """Build a processor stamping service identity onto each event."""

    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return add_service


def build_processors(settings: "Settings") -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        service_context(settings),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=settings.environment == "development"))
    return processors


def setup_logging(settings: Optional["Settings"] = None) -> None:
    """Configure structlog and stdlib logging for the render service."""
    settings = settings or get_settings()

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(get_logging_config(settings))


def get_logging_config(settings: "Settings") -> Dict[str, Any]:
    """Get the stdlib ``dictConfig`` mapping for these settings."""
    console = {"handlers": ["console"], "propagate": False}

    loggers: Dict[str, Any] = {
        "": {"level": settings.log_level, **console},
        "zpl_render": {"level": settings.log_level, **console},
    }
    for name, level in LIBRARY_LEVELS.items():
        loggers[name] = {"level": level, **console}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "rename_fields": {"levelname": "level", "asctime": "timestamp"},
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": "json" if settings.environment == "production" else "standard",
                "stream": sys.stdout,
            },
        },
        "loggers": loggers,
    }


def get_logger(name: str, **context: Any) -> structlog.BoundLogger:
    """Get a structured logger, optionally pre-bound with context."""
    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger


setup_logging()
