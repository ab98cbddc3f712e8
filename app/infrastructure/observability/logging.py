"""
Structured logging setup for the automation engine.
Provides JSON-formatted logs with consistent fields for job and outbox monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            # job/run_key bound via bind_contextvars show up on every line
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _drop_empty_fields,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _drop_empty_fields(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove None-valued keys so optional context does not clutter log lines."""
    return {key: value for key, value in event_dict.items() if value is not None}


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_job_result(job: str, result: dict[str, Any]) -> None:
    """Log the outcome of one job invocation with consistent fields."""
    logger = get_logger("jobs")

    log_data = {
        "job": job,
        "run_key": result.get("run_key"),
        "event_type": "job_run",
    }

    if not result.get("ok", False):
        logger.error("Automation job failed", error=result.get("error"), **log_data)
        return

    if result.get("skipped"):
        logger.info("Automation job skipped", status=result.get("status"), **log_data)
        return

    summary = result.get("summary") or {}
    counters = {
        key: value
        for key, value in summary.items()
        if isinstance(value, int) and not isinstance(value, bool)
    }
    errors = summary.get("errors") or []
    if errors:
        logger.warning(
            "Automation job completed with errors",
            error_count=len(errors),
            errors=errors[:10],
            **counters,
            **log_data,
        )
    else:
        logger.info("Automation job completed", **counters, **log_data)
