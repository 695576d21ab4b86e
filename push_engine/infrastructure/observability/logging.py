"""
Structured logging setup for the push notification engine.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            # Per-run context (run_id, job) bound by the jobs
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _truncate_device_tokens,
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
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def token_preview(token: str | None) -> str | None:
    """Shorten a device token for log output."""
    if not token:
        return token
    return token[:12] + "..." if len(token) > 12 else token


def _truncate_device_tokens(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Never let a full device token reach the log stream."""
    token = event_dict.get("device_token")
    if isinstance(token, str):
        event_dict["device_token"] = token_preview(token)
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def bind_run_context(**context: Any) -> None:
    """Attach run-scoped fields (run_id, job, ...) to every following log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_run_summary(job: str, metrics: dict[str, Any]) -> None:
    """Log the outcome of one job run with consistent fields."""
    logger = get_logger("jobs")

    log_data = {key: value for key, value in metrics.items() if key != "outcomes"}
    log_data["job_run"] = job

    if metrics.get("skipped"):
        logger.info("Job run skipped", **log_data)
    elif metrics.get("total_failed") and not metrics.get("total_sent"):
        logger.warning("Job run completed without deliveries", **log_data)
    else:
        logger.info("Job run completed", **log_data)
