import time
from dataclasses import dataclass, field
from typing import Callable
from fastapi import Request
from clinic_core.core.config import settings
from clinic_core.core.errors import RateLimitError

@dataclass
class _Window:
    started: float
    count: int = 0

@dataclass
class RateLimitState:
    """Fixed-window request counter keyed by client (usually the ip address).

    One instance lives on ``app.state``; nothing is kept at module level so
    separate apps (and tests) never share counters. Expired windows are swept
    at most once per window length, from ``hit`` itself.
    """
    max_requests: int = settings.RATE_LIMIT_MAX_REQUESTS
    window_seconds: float = settings.RATE_LIMIT_WINDOW_SECONDS
    clock: Callable[[], float] = time.monotonic
    _windows: dict[str, _Window] = field(default_factory=dict)
    _last_prune: float | None = None

    def hit(self, key: str) -> bool:
        """Count one request for ``key``; False once the window is exhausted."""
        now = self.clock()
        if self._last_prune is None or now - self._last_prune >= self.window_seconds:
            self._prune(now)
        window = self._windows.get(key)
        if window is None or now - window.started >= self.window_seconds:
            window = self._windows[key] = _Window(started=now)
        window.count += 1
        return window.count <= self.max_requests

    def prune(self) -> None:
        self._prune(self.clock())

    def _prune(self, now: float) -> None:
        self._last_prune = now
        expired = [k for k, w in self._windows.items() if now - w.started >= self.window_seconds]
        for k in expired:
            del self._windows[k]

async def rate_limit(request: Request) -> None:
    state: RateLimitState | None = getattr(request.app.state, "rate_limit", None)
    if state is None:
        return
    key = request.client.host if request.client else "unknown"
    if not state.hit(key):
        raise RateLimitError()
