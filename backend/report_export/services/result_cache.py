"""Capacity-bounded, TTL-expiring store for rendered export artifacts."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from report_export.services import metrics

LOGGER = structlog.get_logger(__name__)


class PayloadTooLargeForCache(ValueError):
    """A single payload is larger than the whole cache capacity."""


@dataclass
class CacheEntry:
    key: str
    payload: bytes
    expires_at: float
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.payload)


class ResultCache:
    """In-memory byte-blob store keyed by opaque strings.

    The sum of stored payload sizes never exceeds ``capacity_bytes``. When an
    insert would overflow, entries closest to expiry are evicted first, even
    if they have not expired yet. Entries are unreadable once ``now`` passes
    their ``expires_at``.
    """

    def __init__(self, capacity_bytes: int, default_ttl: float, clock: Callable[[], float] = time.time):
        if capacity_bytes <= 0:
            raise ValueError("capacity_bytes must be positive")
        self.capacity_bytes = capacity_bytes
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._total = 0

    @property
    def total_bytes(self) -> int:
        return self._total

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and self._clock() <= entry.expires_at

    def store(
        self,
        key: str,
        payload: bytes,
        ttl: Optional[float] = None,
        content_type: str = "application/octet-stream",
    ) -> CacheEntry:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        size = len(payload)
        if size > self.capacity_bytes:
            raise PayloadTooLargeForCache(
                f"{size} bytes does not fit in a {self.capacity_bytes} byte cache"
            )

        # replacing a key frees its old payload first
        self._remove(key)

        overflow = self._total + size - self.capacity_bytes
        if overflow > 0:
            self._evict(overflow)

        entry = CacheEntry(key=key, payload=bytes(payload), expires_at=self._clock() + ttl, content_type=content_type)
        self._entries[key] = entry
        self._total += size
        metrics.result_cache_bytes.set(self._total)
        return entry

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            self._remove(key)
            return None
        return entry

    def delete(self, key: str) -> bool:
        return self._remove(key) is not None

    def sweep_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for key in expired:
            self._remove(key)
        if expired:
            LOGGER.info("result_cache_swept", removed=len(expired), total_bytes=self._total)
        return len(expired)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "totalBytes": self._total,
            "capacityBytes": self.capacity_bytes,
        }

    def _evict(self, needed: int) -> None:
        now = self._clock()
        freed = 0
        for entry in sorted(self._entries.values(), key=lambda e: e.expires_at):
            if freed >= needed:
                break
            self._remove(entry.key)
            freed += entry.size
            metrics.result_cache_evictions_total.inc()
            LOGGER.info(
                "result_cache_evicted",
                key=entry.key,
                size=entry.size,
                expired=now > entry.expires_at,
            )

    def _remove(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total -= entry.size
            metrics.result_cache_bytes.set(self._total)
        return entry


__all__ = ["CacheEntry", "PayloadTooLargeForCache", "ResultCache"]
