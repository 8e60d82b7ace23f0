"""Centralized retry / backoff helpers.

``run_with_retries`` wraps a single fallible call (an embedding request, a
vector search, a tracker API call) with exponential backoff plus jitter.
Failures are classified through :func:`issuetriage.errors.classify_error`:
permanent failures propagate immediately, transient ones are retried until
the attempt budget is spent.

Environment overrides:
  ISSUETRIAGE_RETRY_ATTEMPTS (retries after the first call, default 5)
  ISSUETRIAGE_RETRY_BASE (seconds base, default 1.0)
  ISSUETRIAGE_RETRY_MAX_SLEEP (seconds cap, default 60)

Backoff waits on a ``threading.Event`` so a caller can cancel mid-wait.
"""

from __future__ import annotations

import os
import random
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .errors import TriageError, classify_error
from .logging import get_logger

T = TypeVar("T")

_JITTER = random.SystemRandom()


class RetryExhaustedError(TriageError):
    """Raised once every attempt of an operation failed transiently."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class RetryCancelledError(TriageError):
    """Raised when the cancel signal fires during a backoff wait."""

    def __init__(self, operation: str, last_error: BaseException):
        super().__init__(f"{operation}: cancelled during retry backoff")
        self.operation = operation
        self.last_error = last_error


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class RetryConfig:
    max_retries: int = field(
        default_factory=lambda: int(_env_float("ISSUETRIAGE_RETRY_ATTEMPTS", 5))
    )
    base_delay: float = field(default_factory=lambda: _env_float("ISSUETRIAGE_RETRY_BASE", 1.0))
    max_delay: float = field(
        default_factory=lambda: _env_float("ISSUETRIAGE_RETRY_MAX_SLEEP", 60.0)
    )
    jitter_ratio: float = 0.25

    @property
    def attempts(self) -> int:
        return max(0, self.max_retries) + 1


def is_transient(exc: BaseException) -> bool:
    return classify_error(exc).transient


def compute_delay(attempt: int, cfg: RetryConfig, rng: random.Random | None = None) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2^attempt + jitter, capped."""
    delay = cfg.base_delay * (2**attempt)
    ratio = min(max(cfg.jitter_ratio, 0.0), 1.0)
    if ratio > 0:
        delay += (rng or _JITTER).uniform(0, ratio * delay)
    return max(0.0, min(delay, cfg.max_delay))


def run_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig | None = None,
    operation: str = "operation",
    cancel: threading.Event | None = None,
) -> T:
    cfg = cfg or RetryConfig()
    cancel = cancel or threading.Event()
    logger = get_logger()
    attempts = cfg.attempts
    for attempt in range(attempts):
        try:
            return fn()
        except Exception as exc:
            info = classify_error(exc)
            if not info.transient:
                raise
            if attempt == attempts - 1:
                raise RetryExhaustedError(operation, attempts, exc) from exc
            delay = compute_delay(attempt, cfg)
            logger.warning(
                f"[retry] {operation}: transient {info.category}, "
                f"attempt {attempt + 1}/{attempts}, sleeping {delay:.2f}s",
                operation=operation,
                category=info.category,
            )
            if cancel.wait(delay):
                raise RetryCancelledError(operation, exc) from exc
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = [
    "RetryCancelledError",
    "RetryConfig",
    "RetryExhaustedError",
    "compute_delay",
    "is_transient",
    "run_with_retries",
]
