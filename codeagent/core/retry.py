"""Bounded retry with linear backoff."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from codeagent.core.logging import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Run an operation up to ``1 + max_retries`` times.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately.  When every attempt fails the last error is re-raised.

    Example::

        policy = RetryPolicy(max_retries=2, backoff_seconds=2.0, retry_on=(BackendError,))
        text = policy.call(backend.generate, prompt, ws.path)
    """

    max_retries: int = 2
    backoff_seconds: float = 2.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = time.sleep

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return self.backoff_seconds * attempt

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        attempts = 1 + max(self.max_retries, 0)
        name = getattr(fn, "__qualname__", repr(fn))
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except self.retry_on as exc:
                if attempt == attempts:
                    logger.error("retry: %s failed after %d attempt(s): %s", name, attempts, exc)
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    "retry: %s attempt %d/%d failed: %s — retrying in %.1fs",
                    name, attempt, attempts, exc, wait,
                )
                self.sleep(wait)
        raise AssertionError("unreachable")  # pragma: no cover
