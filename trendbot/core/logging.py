"""
Structured logging configuration using dictConfig.

The ``trendbot`` logger owns the console handler. Upstream-facing packages
(sources, scraper, resilience) get their own level so adapter and breaker
chatter can be turned up without flooding the rest of the service. Client
libraries that log every request are held at WARNING.
"""
import logging
import logging.config
import sys
from typing import Any, Dict, Optional

from .settings import Settings, get_settings

# Packages that talk to the platforms; governed by settings.source_log_level
UPSTREAM_LOGGERS = ("trendbot.sources", "trendbot.scraper", "trendbot.resilience")

# Third-party loggers that emit a line per request or per command at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "redis", "uvicorn.access")

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _logger(level: str, propagate: bool = False) -> Dict[str, Any]:
    config: Dict[str, Any] = {"level": level, "propagate": propagate}
    if not propagate:
        config["handlers"] = ["console"]
    return config


def get_logging_config(service_name: Optional[str] = None, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Get logging configuration dictionary."""
    settings = settings or get_settings()
    production = settings.environment == "production"

    json_format = JSON_FORMAT
    console_format = CONSOLE_FORMAT
    if service_name:
        json_format = f"%(asctime)s %(levelname)s {service_name} %(name)s %(message)s"
        console_format = f"%(asctime)s [{service_name}] [%(levelname)s] %(name)s: %(message)s"

    loggers: Dict[str, Any] = {
        "trendbot": _logger(settings.log_level),
        "uvicorn": _logger("INFO"),
    }
    # Propagate to "trendbot" so records share its handler
    for name in UPSTREAM_LOGGERS:
        loggers[name] = _logger(settings.source_log_level, propagate=True)
    for name in QUIET_LOGGERS:
        loggers[name] = _logger("WARNING")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": json_format,
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "class": "pythonjsonlogger.json.JsonFormatter",
            },
            "console": {
                "format": console_format,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            # Levels are set per logger; the handler passes everything through
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if production else "console",
                "stream": sys.stdout,
            }
        },
        "loggers": loggers,
        "root": {
            "level": settings.log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(service_name: Optional[str] = None, settings: Optional[Settings] = None) -> None:
    """Configure structured logging using dictConfig."""
    logging.config.dictConfig(get_logging_config(service_name, settings))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
