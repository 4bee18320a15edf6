"""Structured logging configuration for reelforge.

Every record emitted while a pipeline run is in flight carries the run id
and the stage the run is in, so interleaved output from concurrent runs can
be told apart.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)
current_stage: ContextVar[str | None] = ContextVar("current_stage", default=None)


def add_run_context(_logger, _method_name, event_dict):
    """Structlog processor adding run_id and stage to events logged during a run."""
    run_id = current_run_id.get()
    if run_id:
        event_dict["run_id"] = run_id
        stage = current_stage.get()
        if stage:
            event_dict["stage"] = stage
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON logs (for production). If False, use colored console output.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_run_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records (logging.getLogger(__name__)) go through the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Suppress noisy third-party loggers
    for logger_name in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def set_run_context(run_id: str, stage: str | None = None) -> None:
    """Start tagging log records with ``run_id`` (and ``stage`` if given)."""
    current_run_id.set(run_id)
    current_stage.set(stage)


def set_run_stage(stage: str) -> None:
    """Record the stage the current run has moved into."""
    current_stage.set(stage)


def clear_run_context() -> None:
    current_run_id.set(None)
    current_stage.set(None)
