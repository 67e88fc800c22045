"""
Resolved-template cache.

A bounded, time-limited cache of fallback-chain resolutions keyed by
(tenant, workspace, document type). Only successful resolutions are
stored, so a newly published template is picked up by requests that
previously found nothing.

This is the only shared mutable structure on the request path. It is
guarded by a lock because resolution runs on worker threads.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from renderer.app.templates.models import TemplateDefinition

CacheKey = Tuple[str, str, str]


class TemplateCache:
    def __init__(
        self,
        *,
        ttl_seconds: float = 60.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, Tuple[float, TemplateDefinition]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[TemplateDefinition]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, definition = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return definition

    def put(self, key: CacheKey, definition: TemplateDefinition) -> None:
        expires_at = self._clock() + self._ttl
        with self._lock:
            self._entries[key] = (expires_at, definition)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
