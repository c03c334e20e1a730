"""Structured logging configuration for shellgate.

Uses structlog for structured, context-rich logging that supports
both human-readable console output and machine-readable JSON format.
Logs always go to stderr so they never mix with command output.
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from shellgate.config import GateSettings


def configure_logging(settings: "GateSettings | None" = None) -> None:
    """Configure structured logging based on settings.

    Args:
        settings: Gate settings. If None, uses defaults (warnings only).
    """
    log_level = logging.WARNING
    log_format = "console"

    if settings is not None:
        log_level = getattr(logging, settings.log_level.upper(), logging.WARNING)
        log_format = settings.log_format

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name) if name else structlog.get_logger()


def bind_context(**kwargs: object) -> None:
    """Bind context variables to all subsequent log calls in the current context.

    Example:
        bind_context(session_id="abc123")
        logger.info("decision")  # Will include session_id

    Args:
        **kwargs: Key-value pairs to bind to logging context
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


class Loggers:
    """Pre-configured logger instances for shellgate components."""

    @staticmethod
    def cli() -> structlog.stdlib.BoundLogger:
        """Logger for the command-line entry point."""
        return get_logger("shellgate.cli")

    @staticmethod
    def config() -> structlog.stdlib.BoundLogger:
        """Logger for configuration."""
        return get_logger("shellgate.config")

    @staticmethod
    def gate() -> structlog.stdlib.BoundLogger:
        """Logger for classification, policy and confirmation."""
        return get_logger("shellgate.gate")

    @staticmethod
    def executor() -> structlog.stdlib.BoundLogger:
        """Logger for command execution."""
        return get_logger("shellgate.executor")

    @staticmethod
    def audit() -> structlog.stdlib.BoundLogger:
        """Logger for the audit trail."""
        return get_logger("shellgate.audit")
