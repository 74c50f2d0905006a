from __future__ import annotations

import json
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from .models import AIQueryRequest, TenantContext

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_SWEEP_EVERY = 100

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class ResponseCache(Generic[T]):
    """Thread-safe LRU cache with per-entry TTL.

    Expiry is checked lazily on ``get``, and every ``sweep_every`` writes
    ``purge_expired`` drops entries nobody reads again.
    The cache knows nothing about tenants, so keys must come from
    ``make_cache_key``.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = DEFAULT_SWEEP_EVERY,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if sweep_every < 1:
            raise ValueError("sweep_every must be at least 1")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self.sweep_every = sweep_every
        self._writes = 0
        self._store: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            self._store[key] = CacheEntry(value=value, expires_at=expires_at)
            self._store.move_to_end(key)
            while len(self._store) > self.max_entries:
                self._store.popitem(last=False)
            self._writes += 1
            due = self._writes % self.sweep_every == 0
        if due:
            self.purge_expired()

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._store.items() if now > e.expires_at]
            for key in expired:
                del self._store[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


def normalize_query(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.strip()).lower()


def make_cache_key(tenant: TenantContext, req: AIQueryRequest) -> str:
    payload: dict[str, Any] = {
        "org_id": tenant.org_id,
        "q": normalize_query(req.query),
        "date_range": req.date_range.model_dump(by_alias=True) if req.date_range else None,
        "location_ids": list(req.location_ids) if req.location_ids is not None else None,
        "channel": req.channel,
        "order_type": req.order_type,
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))
