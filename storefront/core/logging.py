"""Structured logging for the data layer.

Lines are rendered by structlog as JSON or console text. Process-wide context
(cache backend, database dialect) is bound once at startup through
``bind_store_context`` and merged into every line from then on.
"""

import sys
import structlog
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union
from storefront.core.config import Settings

# Drivers that log every statement or connection checkout at INFO
DRIVER_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "sqlalchemy.pool")


def _handlers(settings: Settings, level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _renderer(settings: Settings):
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=False,
        pad_event=35,
        exception_formatter=structlog.dev.plain_traceback
    )


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging at ``settings.log_level``."""
    level = getattr(logging, settings.log_level)
    logging.basicConfig(level=level, handlers=_handlers(settings, level), format="%(message)s")

    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso" if settings.log_format == "json" else "%H:%M:%S"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(settings),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_store_context(**context: Any) -> None:
    """Attach ``context`` to every log line emitted after this call."""
    structlog.contextvars.bind_contextvars(**context)


def clear_store_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_cache_operation(logger: structlog.BoundLogger, operation: str,
                        keys: Union[str, Iterable[str]], hit: Optional[bool] = None,
                        **kwargs) -> None:
    """Debug line for one cache call; ``keys`` is a single key or a batch."""
    if isinstance(keys, str):
        kwargs["cache_key"] = keys
    else:
        keys = list(keys)
        kwargs["cache_keys"] = keys
        kwargs["key_count"] = len(keys)
    if hit is not None:
        kwargs["cache_hit"] = hit

    logger.debug("Cache operation", operation=operation, **kwargs)


def log_retry_attempt(logger: structlog.BoundLogger, attempt: int, max_retries: int,
                      error: BaseException, retry_in: Optional[float] = None) -> None:
    """Warning for one failed transient attempt of a relational call."""
    extra = {} if retry_in is None else {"retry_in_seconds": round(retry_in, 3)}
    logger.warning(
        "Database operation failed",
        attempt=attempt,
        max_retries=max_retries,
        error=str(error),
        error_type=type(error).__name__,
        **extra
    )


def log_store_failure(logger: structlog.BoundLogger, message: str, error: BaseException,
                      kind: str, **context) -> None:
    """Record a repository failure that is being turned into a default value.

    Missing records are expected traffic and go out as warnings; store faults
    as errors.
    """
    log = logger.warning if kind == "not_found" else logger.error
    log(message, error=str(error), error_type=type(error).__name__, kind=kind, **context)
