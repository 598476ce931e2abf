"""Structured logging helpers for workunit."""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Iterable, Optional

ROOT_LOGGER = "workunit"

_correlation_id: ContextVar[str | None] = ContextVar("workunit_correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def set_correlation_id(value: Optional[str] = None) -> str:
    token = value or str(uuid.uuid4())
    _correlation_id.set(token)
    return token


def get_correlation_id() -> str:
    cid = _correlation_id.get()
    if cid is None:
        cid = set_correlation_id()
    return cid


class CallTimer:
    """
    Context manager logging the wall-clock duration of a block.

    Durations at or above ``threshold_ms`` are logged at WARNING, the rest at DEBUG.
    """

    def __init__(
        self,
        name: str,
        logger: logging.Logger,
        *,
        sql: str | None = None,
        params: Iterable[Any] | None = None,
        threshold_ms: float = 100,
    ) -> None:
        self.name = name
        self.logger = logger
        self.sql = sql
        self.params = params
        self.threshold_ms = threshold_ms
        self.elapsed_ms = 0.0
        self._start = 0.0

    def __enter__(self) -> "CallTimer":
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (time.monotonic() - self._start) * 1000
        level = logging.WARNING if self.elapsed_ms >= self.threshold_ms else logging.DEBUG
        extra = {"sql": self.sql, "params": self.params, "elapsed_ms": self.elapsed_ms}
        self.logger.log(level, "%s took %.2fms", self.name, self.elapsed_ms, extra=extra)


def time_call(
    name: str,
    logger: logging.Logger,
    *,
    sql: str | None = None,
    params: Iterable[Any] | None = None,
    threshold_ms: float = 100,
) -> CallTimer:
    return CallTimer(name, logger, sql=sql, params=params, threshold_ms=threshold_ms)
