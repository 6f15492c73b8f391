import structlog
import logging.config
from typing import Any, Dict

SERVICE_NAME = "market-cache"

# Named loggers used by the cache packages; anything else goes to the root
CACHE_LOGGERS = ("cache", "config", "error_handling", "monitoring")


def add_service_name(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Tag every event with the service that emitted it."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog for the market cache.

    structlog events and plain ``logging`` records from third-party
    libraries (redis, asyncio) share one handler, so both carry the
    service name and timestamp. ``json_logs=False`` renders for a console,
    which the maintenance CLI uses when run interactively.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    processors = shared_processors + [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    renderer = (structlog.processors.JSONRenderer() if json_logs
                else structlog.dev.ConsoleRenderer(colors=False))

    cache_loggers = {
        name: {"handlers": ["default"], "level": log_level, "propagate": False}
        for name in CACHE_LOGGERS
    }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "market_cache": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": renderer,
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "level": log_level,
                "class": "logging.StreamHandler",
                "formatter": "market_cache",
            },
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": "WARNING",
            },
            **cache_loggers,
        }
    })

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def log_error(logger: Any, error: Exception, context: Dict[str, Any] = None,
              event: str = "error_occurred") -> None:
    """Log a storage or codec failure with its type and message."""
    error_details = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **(context or {})
    }
    logger.error(event, **error_details)
