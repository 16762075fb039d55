# certmanager/core/rate_limit.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from certmanager.core.config import settings
from certmanager.core.errors import RateLimitedError


@dataclass
class _Window:
    count: int
    reset_at: float


class AuthRateLimiter:
    """Janela fixa em memória por chave (ip + identificador)."""

    def __init__(self, max_attempts: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, _Window] = {}
        self._next_purge = 0.0
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        # no máximo uma varredura por janela
        if now < self._next_purge:
            return
        self._hits = {k: w for k, w in self._hits.items() if w.reset_at >= now}
        self._next_purge = now + self.window_seconds

    def hit(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._purge(now)
            window = self._hits.get(key)
            if window is None or now > window.reset_at:
                self._hits[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return
            if window.count >= self.max_attempts:
                raise RateLimitedError(
                    "Too many authentication attempts. Please try again later.",
                    details={"retry_after_seconds": int(window.reset_at - now) + 1},
                )
            window.count += 1

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._next_purge = 0.0


auth_rate_limiter = AuthRateLimiter(
    max_attempts=settings.AUTH_RATE_LIMIT_ATTEMPTS,
    window_seconds=settings.AUTH_RATE_LIMIT_WINDOW_SECONDS,
)
