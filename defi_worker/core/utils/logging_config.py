"""Structured logging configuration for the DeFi portfolio worker.

Uses structlog with context variables, ISO timestamps, and console rendering.
Provides configure_logging() for one-time setup at process start and
get_logger() for named loggers that components receive by injection.
"""

import logging

import structlog

_configured = False


def configure_logging(level: str = "INFO", force: bool = False) -> None:
    """Configure structlog processors once.

    Safe to call multiple times -- only the first invocation takes effect
    unless ``force`` is set.

    Args:
        level: Minimum level name (``"DEBUG"``, ``"INFO"``, ...).
        force: Reconfigure even if logging was already configured.
    """
    global _configured
    if _configured and not force:
        return

    min_level = logging.getLevelName(level.upper())
    if not isinstance(min_level, int):
        min_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a bound logger with the given name.

    Ensures logging is configured before returning.

    Args:
        name: Logger name, typically the component name.

    Returns:
        A structlog BoundLogger instance bound with the given name.
    """
    configure_logging()
    return structlog.get_logger(logger_name=name)
