from __future__ import annotations
import time
import threading
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """Small in-process key/value cache with per-entry expiry.

    One instance lives on ``app.extensions['company_cache']`` so tests can swap
    the clock or invalidate explicitly after a company write.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Optional[Any] = None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any):
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None):
        """Drop one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self):
        return len(self._entries)
