"""Per-requester sliding-window rate limiter."""
import time
from typing import Callable

from .config import REQUEST_LIMIT, REQUEST_WINDOW_MINUTES


class RateLimiter:
    """At most `limit` requests per requester within the trailing window.

    History is pruned lazily on every check/record; names are never evicted.
    """

    def __init__(
        self,
        limit: int = REQUEST_LIMIT,
        window_minutes: float = REQUEST_WINDOW_MINUTES,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window_minutes = window_minutes
        self._clock = clock
        self._history: dict[str, list[float]] = {}

    def _prune(self, name: str) -> list[float]:
        window_start = self._clock() - self.window_minutes * 60
        kept = [t for t in self._history.get(name, []) if t >= window_start]
        self._history[name] = kept
        return kept

    def can_request(self, name: str) -> bool:
        return len(self._prune(name.strip())) < self.limit

    def record_request(self, name: str):
        name = name.strip()
        self._prune(name).append(self._clock())

    def history(self, name: str) -> list[float]:
        return list(self._prune(name.strip()))
