from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    """Tiny TTL cache for aggregation results served over HTTP."""

    def __init__(self, ttl_s: int = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        v = self._store.get(key)
        if not v:
            return None
        ts, obj = v
        if self._clock() - ts > self.ttl_s:
            self._store.pop(key, None)
            return None
        return obj

    def set(self, key: str, value: Any) -> None:
        self._store[key] = (self._clock(), value)

    def get_or_compute(self, key: str, producer: Callable[[], Any]) -> Any:
        """
        Cached value for ``key`` or the result of ``producer``. Exceptions
        raised by ``producer`` propagate and nothing is stored.
        """

        cached = self.get(key)
        if cached is None:
            cached = producer()
            self.set(key, cached)
        return cached

    def clear(self) -> None:
        self._store.clear()
