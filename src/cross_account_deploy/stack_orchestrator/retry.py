"""Retry helpers with bounded backoff."""

from __future__ import annotations

import time
from typing import Callable, TypeVar


T = TypeVar("T")


def backoff_delay(
    attempt: int,
    *,
    base_delay_seconds: float,
    max_delay_seconds: float,
    factor: float = 2.0,
) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at ``max_delay_seconds``."""
    return min(base_delay_seconds * (factor ** (attempt - 1)), max_delay_seconds)


def with_retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay_seconds: float = 0.2,
    max_delay_seconds: float = 2.0,
    retry_on: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, float, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    if attempts <= 1:
        return func()
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except Exception as exc:
            if retry_on is not None and not retry_on(exc):
                raise
            last_exc = exc
            if attempt >= attempts:
                break
            delay = backoff_delay(
                attempt,
                base_delay_seconds=base_delay_seconds,
                max_delay_seconds=max_delay_seconds,
            )
            if on_retry:
                on_retry(attempt, delay, exc)
            sleep(delay)
    if last_exc is None:
        raise RuntimeError("RETRY_FAILED")
    raise last_exc
