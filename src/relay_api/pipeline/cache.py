"""
In-Memory Response Cache with Namespaced TTLs.

Holds provider results for idempotent capabilities so that repeated
identical requests are answered without an upstream call. Features:
    - Per-namespace TTL table (completion 2h, voice 1h, profile 30m,
      template 24h, anything else 1h by default)
    - Passive expiry on read, opportunistic sweep on write
    - Content-addressed keys: "<namespace>:" + sha256(canonical JSON)
    - Thread-safe operations, last write wins
    - Statistics tracking (hits, misses, expirations, per-namespace size)

There is no size bound and no eviction beyond TTL expiry.

Example:
    >>> cache = ResponseCache()
    >>> key = cache.key({"text": "Merhaba", "voiceId": "v1"}, "voice")
    >>> cache.set(key, {"audioReference": "/api/elevenlabs/audio/ab12"}, "voice")
    >>> cache.get(key)
    {'audioReference': '/api/elevenlabs/audio/ab12'}
"""
from __future__ import annotations

import hashlib
import json
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

from relay_api.core.config import CacheConfig, Defaults
from relay_api.core.logging import debug, get_logger, info, verbose

_LOG = get_logger("relay.cache")


@dataclass
class CacheEntry:
    """
    A cached provider result.

    Attributes:
        key: Namespaced content key.
        value: JSON-compatible provider result.
        namespace: TTL namespace the entry was stored under.
        ttl_seconds: Lifetime resolved from the namespace table at store time.
        created_at: Unix timestamp when stored.
    """
    key: str
    value: Any
    namespace: str
    ttl_seconds: int
    created_at: float = field(default_factory=time.time)

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl_seconds


def hash_dict(data: Any) -> str:
    """SHA-256 of the JSON serialization with sorted keys."""
    payload = json.dumps(data, sort_keys=True, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def normalize(content: Any, volatile: Iterable[str] = ()) -> Any:
    """
    Drop None values and volatile keys, recursively.

    Two requests differing only in a volatile field (e.g. a message's
    ``created_at``) or in an explicit null normalize to the same content.
    """
    drop = frozenset(volatile)
    if isinstance(content, Mapping):
        return {
            str(k): normalize(v, drop)
            for k, v in content.items()
            if v is not None and k not in drop
        }
    if isinstance(content, (list, tuple)):
        return [normalize(v, drop) for v in content]
    return content


class ResponseCache:
    """
    Thread-safe TTL cache keyed by normalized request content.

    Statistics:
        hits, misses, expirations (passive and swept), stores, size and
        per-namespace sizes. Use stats() to read them.
    """

    def __init__(
        self,
        namespace_ttls: Optional[Mapping[str, int]] = None,
        default_ttl_seconds: int = Defaults.CACHE_DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: int = Defaults.CACHE_SWEEP_INTERVAL_SECONDS,
        clock=time.time,
    ):
        """
        Args:
            namespace_ttls: namespace -> TTL seconds. Defaults to the
                built-in table.
            default_ttl_seconds: TTL for namespaces not in the table.
            sweep_interval_seconds: Minimum seconds between sweeps.
            clock: Time source returning unix seconds (overridable in tests).
        """
        self.namespace_ttls: Dict[str, int] = dict(
            Defaults.CACHE_NAMESPACE_TTLS if namespace_ttls is None else namespace_ttls
        )
        self.default_ttl_seconds = int(default_ttl_seconds)
        self.sweep_interval_seconds = int(sweep_interval_seconds)
        self._clock = clock

        self._d: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._stores = 0

    @classmethod
    def from_config(cls, config: CacheConfig) -> "ResponseCache":
        return cls(
            namespace_ttls=config.namespaces,
            default_ttl_seconds=config.default_ttl_seconds,
            sweep_interval_seconds=config.sweep_interval_seconds,
        )

    def ttl_for(self, namespace: str) -> int:
        return int(self.namespace_ttls.get(namespace, self.default_ttl_seconds))

    @staticmethod
    def key(content: Any, namespace: str, volatile: Iterable[str] = ()) -> str:
        """
        Build the cache key for request content.

        Args:
            content: JSON-compatible request content.
            namespace: Key prefix (also the TTL namespace).
            volatile: Field names that must not influence the key.

        Returns:
            "<namespace>:<64 hex chars>"
        """
        return f"{namespace}:{hash_dict(normalize(content, volatile))}"

    def get(self, key: str) -> Optional[Any]:
        """
        Look up a key. Expired entries are removed and reported as a miss.

        Returns:
            The stored value, or None.
        """
        now = self._clock()
        with self._lock:
            entry = self._d.get(key)
            if entry is not None and entry.expired(now):
                del self._d[key]
                self._expirations += 1
                verbose(_LOG, "expired", key=key[:24], age=round(now - entry.created_at, 1))
                entry = None

            if entry is None:
                self._misses += 1
                return None
            self._hits += 1

        info(_LOG, "cache_hit", key=key[:24])
        return entry.value

    def set(self, key: str, value: Any, namespace: str) -> CacheEntry:
        """
        Store a value under the namespace's TTL. Overwrites silently.

        Also sweeps expired entries when the sweep interval has elapsed.
        """
        now = self._clock()
        entry = CacheEntry(key=key, value=value, namespace=namespace,
                           ttl_seconds=self.ttl_for(namespace), created_at=now)
        with self._lock:
            self._d[key] = entry
            self._stores += 1
            due = now - self._last_sweep >= self.sweep_interval_seconds

        debug(_LOG, "cache_set", key=key[:24], ttl=entry.ttl_seconds)
        if due:
            self.sweep()
        return entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._d.pop(key, None) is not None

    def invalidate_by_pattern(self, pattern: str) -> int:
        """
        Remove every key matching a regular expression (re.search semantics).

        Returns:
            Number of entries removed.
        """
        rx = re.compile(pattern)
        with self._lock:
            doomed = [k for k in self._d if rx.search(k)]
            for k in doomed:
                del self._d[k]

        if doomed:
            info(_LOG, "cache_invalidated", pattern=pattern, removed=len(doomed))
        return len(doomed)

    def sweep(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._d.items() if e.expired(now)]
            for k in expired:
                del self._d[k]
            self._expirations += len(expired)
            self._last_sweep = now

        if expired:
            verbose(_LOG, "cache_sweep", removed=len(expired))
        return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._d)
            self._d.clear()
            return count

    def stats(self) -> Dict[str, Any]:
        """
        Returns:
            Dictionary with hits, misses, expirations, stores, size and
            namespaces (namespace -> live entry count).
        """
        with self._lock:
            per_ns: Dict[str, int] = {}
            for e in self._d.values():
                per_ns[e.namespace] = per_ns.get(e.namespace, 0) + 1
            return {
                "hits": self._hits,
                "misses": self._misses,
                "expirations": self._expirations,
                "stores": self._stores,
                "size": len(self._d),
                "namespaces": per_ns,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)

    def __contains__(self, key: str) -> bool:
        """Presence check only; does not apply TTL expiry."""
        with self._lock:
            return key in self._d
