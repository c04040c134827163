from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from govauth.logging import get_logger
from govauth.storage.common import ensure_ttl


class MemoryKeyValueStore:
    """In-process key/value backend for tests and single-node development.

    Expired keys are evicted lazily on access and swept opportunistically on
    writes. ``take`` holds the data lock for the read and the delete, so it is
    atomic within one process.
    """

    atomic_take = True

    # Sweep at most once per this many writes
    _SWEEP_EVERY = 256

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        # RLock so helpers can nest inside public methods
        self._data_lock = threading.RLock()
        self._writes = 0

    def _live(self, key: str, now: float) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= now:
            self._data.pop(key, None)
            return None
        return value

    def _maybe_sweep(self, now: float) -> None:
        self._writes += 1
        if self._writes % self._SWEEP_EVERY:
            return
        expired = [key for key, (_, exp) in self._data.items() if exp <= now]
        for key in expired:
            self._data.pop(key, None)
        if expired:
            self.logger.debug("memory_kv_swept", removed=len(expired))

    async def put(
        self, key: str, value: str, ttl_seconds: int, *, only_if_absent: bool = False
    ) -> bool:
        with self._data_lock:
            now = self._clock()
            if only_if_absent and self._live(key, now) is not None:
                return False
            self._data[key] = (value, now + ensure_ttl(ttl_seconds))
            self._maybe_sweep(now)
            return True

    async def get(self, key: str) -> Optional[str]:
        with self._data_lock:
            return self._live(key, self._clock())

    async def delete(self, key: str) -> None:
        with self._data_lock:
            self._data.pop(key, None)

    async def take(self, key: str) -> Optional[str]:
        with self._data_lock:
            value = self._live(key, self._clock())
            if value is not None:
                self._data.pop(key, None)
            return value

    async def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime of a key in seconds, or None when absent."""
        with self._data_lock:
            now = self._clock()
            if self._live(key, now) is None:
                return None
            return self._data[key][1] - now

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        with self._data_lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._data_lock:
            now = self._clock()
            return sum(1 for _, exp in self._data.values() if exp > now)
