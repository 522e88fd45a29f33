"""structlog configuration shared by the coordinator, worker and CLI."""

import logging

import structlog


def configure_logging(level: str = "info", json_logs: bool = False) -> None:
    """Configure structlog processors and the minimum log level.

    Args:
        level: Level name ("debug", "info", "warning", ...).
        json_logs: Emit JSON lines instead of the developer console renderer.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
