"""
Time-bounded cache of DNS validation outcomes.
"""

import time
from typing import Callable, Optional

from .models import CacheEntry


class ResultCache:
    """
    Domain -> valid cache with a fixed TTL.

    Entries at or past the TTL are treated as absent and dropped on access.
    The cache is only touched from the event loop thread and never across an
    ``await``, so reads and writes cannot interleave.
    """

    DEFAULT_TTL_SECONDS = 300.0

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, domain: str) -> Optional[bool]:
        """Return the cached outcome, or None if missing or expired."""
        entry = self._entries.get(domain)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self._ttl:
            del self._entries[domain]
            return None
        return entry.valid

    def put(self, domain: str, valid: bool) -> None:
        self._entries[domain] = CacheEntry(
            domain=domain,
            valid=valid,
            timestamp=self._clock(),
        )

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [
            domain for domain, entry in self._entries.items()
            if now - entry.timestamp >= self._ttl
        ]
        for domain in expired:
            del self._entries[domain]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
