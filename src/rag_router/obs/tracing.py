"""Timing and token estimation helpers."""

from __future__ import annotations

import math
import time


class Timer:
    """Simple context timer used by the router and retrieval stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

    def peek_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str, chars_per_token: int = 4) -> int:
    """Rough token estimate: one token per `chars_per_token` characters."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)
