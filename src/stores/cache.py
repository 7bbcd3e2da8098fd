"""Thread-safe TTL cache for provider cart snapshots.

Injected into the provider client instead of a module-level map, so each
app instance (and each test) owns its cache.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple


@dataclass
class CartCache:
    """In-memory cache with per-entry TTL and FIFO eviction.

    Attributes:
        default_ttl_seconds: Lifetime of an entry (None = no expiry)
        max_size: Maximum number of entries (None = unlimited)
        name: Cache name used in the logger name
        clock: Monotonic time source
    """

    default_ttl_seconds: Optional[float] = 60.0
    max_size: Optional[int] = None
    name: str = "carts"
    clock: Callable[[], float] = time.monotonic

    _entries: Dict[str, Tuple[Any, float]] = field(default_factory=dict, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _logger: logging.Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(f"cache.{self.name}")

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            value, expires_at = entry
            if self.clock() >= expires_at:
                del self._entries[key]
                self._logger.debug("Cart snapshot expired", extra={"key": key})
                return None

            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        effective_ttl = ttl if ttl is not None else self.default_ttl_seconds
        expires_at = self.clock() + effective_ttl if effective_ttl is not None else float("inf")

        with self._lock:
            if key in self._entries:
                # Re-inserting moves the key to the back of the eviction queue
                del self._entries[key]
            elif self.max_size is not None:
                while self._entries and len(self._entries) >= self.max_size:
                    oldest = next(iter(self._entries))
                    del self._entries[oldest]
                    self._logger.debug("Cart snapshot evicted", extra={"key": oldest, "reason": "max_size"})

            self._entries[key] = (value, expires_at)

    def get_or_compute(self, key: str, compute_fn: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is not None:
            return value

        # Computed outside the lock; a concurrent miss may fetch twice
        computed = compute_fn()
        if computed is not None:
            self.set(key, computed)
        return computed

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self._logger.debug("Cart snapshot invalidated", extra={"key": key})
            return True

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        self._logger.info("Cart cache cleared", extra={"entries_cleared": count})
        return count

    def size(self) -> int:
        with self._lock:
            return len(self._entries)
