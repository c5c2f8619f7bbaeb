"""Namespaced, expiring key/value cache shared by both checking phases.

The cache is a best-effort accelerator: a read that fails for any reason is
a miss and a write that fails is dropped.  Losing an entry only costs one
redundant network round trip.

Entries are serialized as JSON strings::

    {"storedAt": <epoch ms>, "ttl": <ms>, "payload": {...}}

and stored under ``<namespace prefix><hash of the URL>``.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from hashlib import sha256
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

LIVENESS = "liveness"
ARCHIVE = "archive"

MS_PER_DAY = 86_400_000

#: Storage-key prefix per namespace.
NAMESPACE_PREFIXES: dict[str, str] = {
    LIVENESS: "wlp-l:",
    ARCHIVE: "wlp-a:",
}


class CacheStore(Protocol):
    """Raw string storage underneath ``TimedCache``."""

    async def read(self, key: str) -> str | None: ...

    async def write(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryCacheStore:
    """In-process ``CacheStore``; contents die with the process.

    Holds at most *max_entries* values; writing past the limit drops the
    least recently written one.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self.data: dict[str, str] = {}

    async def read(self, key: str) -> str | None:
        return self.data.get(key)

    async def write(self, key: str, value: str) -> None:
        self.data.pop(key, None)
        self.data[key] = value
        while len(self.data) > self.max_entries:
            del self.data[next(iter(self.data))]

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


def url_hash(url: str) -> str:
    """Bounded-length key for an arbitrary-length URL.

    Collisions are possible in principle and not corrected for.
    """
    return sha256(url.encode("utf-8")).hexdigest()[:16]


def _epoch_ms() -> float:
    return datetime.now(timezone.utc).timestamp() * 1000


class TimedCache:
    """Expiring cache with independent TTLs for the ``liveness`` and
    ``archive`` namespaces.

    Args:
        store: the raw storage backend.
        liveness_ttl_ms: default TTL of the liveness namespace.
        archive_ttl_ms: default TTL of the archive namespace.
        clock: returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        liveness_ttl_ms: float = 1 * MS_PER_DAY,
        archive_ttl_ms: float = 7 * MS_PER_DAY,
        clock: Callable[[], float] = _epoch_ms,
    ) -> None:
        self._store = store
        self._ttls = {LIVENESS: liveness_ttl_ms, ARCHIVE: archive_ttl_ms}
        self._clock = clock

    def storage_key(self, namespace: str, key: str) -> str:
        return NAMESPACE_PREFIXES[namespace] + url_hash(key)

    async def get(self, namespace: str, key: str) -> Any | None:
        """Return the cached payload for *key*, or ``None`` if absent or expired."""
        storage_key = self.storage_key(namespace, key)
        try:
            raw = await self._store.read(storage_key)
        except Exception as exc:
            logger.debug("Cache read failed for %s: %s", storage_key, exc)
            return None
        if not raw:
            return None

        try:
            entry = json.loads(raw)
            stored_at = float(entry["storedAt"])
            ttl = float(entry.get("ttl", self._ttls[namespace]))
            payload = entry["payload"]
        except (ValueError, TypeError, KeyError, AttributeError):
            logger.debug("Ignoring malformed cache entry %s", storage_key)
            return None
        if not (math.isfinite(stored_at) and math.isfinite(ttl)):
            # NaN would never compare as expired.
            logger.debug("Ignoring malformed cache entry %s", storage_key)
            return None

        if self._clock() - stored_at >= ttl:
            try:
                await self._store.remove(storage_key)
            except Exception as exc:
                logger.debug("Cache eviction failed for %s: %s", storage_key, exc)
            return None
        return payload

    async def set(
        self, namespace: str, key: str, payload: Any, ttl: float | None = None
    ) -> None:
        """Store *payload* under *key*.  Never raises on store failure."""
        storage_key = self.storage_key(namespace, key)
        entry = {
            "storedAt": self._clock(),
            "ttl": self._ttls[namespace] if ttl is None else ttl,
            "payload": payload,
        }
        try:
            await self._store.write(storage_key, json.dumps(entry))
        except Exception as exc:
            # Full or unavailable: continue without caching.
            logger.debug("Cache write failed for %s: %s", storage_key, exc)
