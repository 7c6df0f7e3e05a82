"""Process-wide expiring cache shared by the ledger and the user directory."""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger('ledger')


class MemoryCache:
    """
    Thread-safe key/value cache with per-entry expiry.

    Invalidation is eager: ``remove`` drops the entry immediately, so the next
    reader always pays one full rebuild.

    Rebuilds that race with a write use ``generation``/``put_if_generation``:
    take the generation before reading the source, and the result is only
    stored if no ``remove`` or ``clear`` happened in between.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                logger.debug(f"Cache entry '{key}' expired")
                return None
            return value

    def generation(self, key: str) -> Tuple[int, int]:
        """Opaque token that changes whenever ``key`` is invalidated."""
        with self._lock:
            return self._epoch, self._generations.get(key, 0)

    def put(self, key: str, value: Any, ttl_seconds: int):
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def put_if_generation(self, key: str, value: Any, ttl_seconds: int,
                          generation: Tuple[int, int]) -> bool:
        """
        Store ``value`` only if ``key`` was not invalidated since ``generation``.

        Returns:
            bool: True if the value was stored
        """
        with self._lock:
            if (self._epoch, self._generations.get(key, 0)) != generation:
                logger.debug(f"Cache entry '{key}' invalidated during rebuild, not stored")
                return False
            self._entries[key] = (self._clock() + ttl_seconds, value)
            return True

    def remove(self, key: str):
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._epoch += 1

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
