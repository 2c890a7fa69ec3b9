"""Observability helpers for docassist."""

from __future__ import annotations

import logging
import time

import structlog
from prometheus_client import Counter, Gauge, Histogram

_logger_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "docassist") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for session provisioning and querying."""

    provisioning_latency = Histogram(
        "docassist_provisioning_duration_seconds",
        "Time spent turning an uploaded document into a ready session.",
        buckets=(1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 60.0, 120.0),
    )
    provisioning_failures = Counter(
        "docassist_provisioning_failures_total",
        "Session provisioning attempts that were rolled back.",
    )
    index_poll_attempts = Histogram(
        "docassist_index_poll_attempts",
        "Status reads needed before the remote index became ready.",
        buckets=(1, 2, 5, 10, 20, 40, 60),
    )
    query_latency = Histogram(
        "docassist_query_duration_seconds",
        "Time spent answering one question, retries included.",
        buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 180.0),
    )
    query_attempts = Histogram(
        "docassist_query_attempts",
        "Attempts needed per answered question.",
        buckets=(1, 2, 3, 4, 5, 6),
    )
    rate_limit_retries = Counter(
        "docassist_rate_limit_retries_total",
        "Retries triggered by provider throttling.",
        ["source"],
    )
    cancelled_runs = Counter(
        "docassist_cancelled_runs_total",
        "Stale runs cancelled before posting a new question.",
    )
    teardown_errors = Counter(
        "docassist_teardown_errors_total",
        "Remote deletions that failed during teardown.",
        ["resource"],
    )
    session_ready = Gauge(
        "docassist_session_ready",
        "1 when a session is ready to answer questions.",
    )

    @classmethod
    def observe_query(cls, duration_seconds: float, attempts: int) -> None:
        cls.query_latency.observe(duration_seconds)
        cls.query_attempts.observe(attempts)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        duration = time.perf_counter() - self._start
        self._callback(duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
