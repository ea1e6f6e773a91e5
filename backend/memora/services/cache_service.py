"""
Memora Backend — In-Process TTL Cache
=======================================

What:  Explicit key-value store with per-entry expiry.
Why:   Pending checkouts and ZIP job status are short-lived process state.
       They live in one named object with a TTL instead of module globals.
How:   Dict of key → (expires_at, value). Reads drop expired entries lazily;
       every `sweep_interval` writes a full sweep purges the rest.
Who:   SubscriptionService (pending checkouts), ArchiveService (ZIP jobs).

Production Upgrade Path:
    Single-process only, like the rate limiter. For multiple workers back
    it with Redis (SET key value EX ttl).

Key conventions:
    checkout_pending:{provider}:{email}  → {"user_id", "tier", "billing_cycle", "reference"}
    zip_job:{job_id}                     → {"status", "phase_id", "file_count", "archive_path", "error"}
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from memora.config import settings

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Key-value store with expiry sweeping.

    Args:
        sweep_interval: Writes between full sweeps of expired entries
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        sweep_interval: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._sweep_interval = sweep_interval
        self._writes_since_sweep = 0
        self._clock = clock

    def set(self, key: str, value: Any, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._entries[key] = (self._clock() + ttl, value)
        self._writes_since_sweep += 1
        if self._writes_since_sweep >= self._sweep_interval:
            self.sweep()

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return default
        return value

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def forget(self, key: str) -> Optional[Any]:
        """Removes a key, returning its live value (None if absent or expired)."""
        entry = self._entries.pop(key, None)
        if entry is None or entry[0] <= self._clock():
            return None
        return entry[1]

    def update(self, key: str, ttl: int, **changes: Any) -> Dict[str, Any]:
        """Merges `changes` into a dict entry and refreshes its TTL."""
        current = self.get(key) or {}
        merged = {**current, **changes}
        self.set(key, merged, ttl)
        return merged

    def sweep(self) -> int:
        """Drops every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._writes_since_sweep = 0
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._writes_since_sweep = 0

    def __len__(self) -> int:
        return len(self._entries)


_MISSING = object()


# ── Singleton Instance ────────────────────────────────────────────────────
cache = TTLCache(sweep_interval=settings.cache_sweep_interval)
