#!/usr/bin/env python3
"""
Response Cache
==============

In-memory LRU cache of model answers keyed by a request fingerprint.
Entries also expire after a maximum age, checked lazily on read.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestFingerprint:
    """Deterministic key for cache-equivalent requests."""

    value: str

    @classmethod
    def compute(
        cls, prompt_text: str, model: str, temperature: float, max_tokens: int
    ) -> "RequestFingerprint":
        # Canonical JSON, no timestamps or salts: stable across runs.
        canonical = json.dumps(
            {
                "prompt": prompt_text,
                "model": model,
                "temperature": round(float(temperature), 6),
                "max_tokens": int(max_tokens),
            },
            sort_keys=True,
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return cls(hashlib.sha256(canonical.encode("utf-8")).hexdigest())

    def short(self) -> str:
        return self.value[:12]

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CachedResponse:
    fingerprint: RequestFingerprint
    text: str
    stored_at: float
    size: int


class ResponseCache:
    """
    Thread-safe LRU response cache with lazy age expiry.

    A single lock guards the OrderedDict; entries are immutable so a
    reader never observes a partially written value.
    """

    def __init__(
        self,
        capacity: int = 128,
        max_age: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError(f"Cache capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.max_age = max_age
        self._clock = clock
        self._entries: "OrderedDict[RequestFingerprint, CachedResponse]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, fingerprint: RequestFingerprint) -> Optional[CachedResponse]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() - entry.stored_at > self.max_age:
                del self._entries[fingerprint]
                self._misses += 1
                logger.debug("Cache entry %s expired", fingerprint.short())
                return None

            # Move to end to mark as recently used (LRU)
            self._entries.move_to_end(fingerprint)
            self._hits += 1
            return entry

    def put(self, fingerprint: RequestFingerprint, text: str) -> CachedResponse:
        entry = CachedResponse(
            fingerprint=fingerprint,
            text=text,
            stored_at=self._clock(),
            size=len(text),
        )
        with self._lock:
            self._entries[fingerprint] = entry
            self._entries.move_to_end(fingerprint)

            # Evict oldest if over limit
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Evicted cache entry %s", evicted.short())
        return entry

    def invalidate(self, fingerprint: RequestFingerprint) -> bool:
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, fingerprint: RequestFingerprint) -> bool:
        """Membership without touching LRU order or hit counters."""
        with self._lock:
            entry = self._entries.get(fingerprint)
            return entry is not None and self._clock() - entry.stored_at <= self.max_age

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
