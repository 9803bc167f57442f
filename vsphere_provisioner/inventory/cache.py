"""
Time-boxed cache for inventory lists that change rarely (hosts, pools).
"""

import threading
import time
from typing import Any, Callable, Dict, Tuple


class TTLCache:
    """Values keyed by scope, each expiring ttl_seconds after it was loaded."""

    def __init__(self, ttl_seconds: float = 900.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, loader: Callable[[], Any]) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry and entry[0] > now:
                return entry[1]

        # Load outside the lock; a concurrent load of the same key just wins last
        value = loader()
        with self._lock:
            self._entries[key] = (now + self.ttl_seconds, value)
        return value

    def invalidate(self, key: str = None):
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
