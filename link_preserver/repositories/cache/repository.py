from __future__ import annotations

import logging
from datetime import datetime, timezone

from pymongo.errors import PyMongoError

from link_preserver.core.collections import CollectionNames
from link_preserver.core.config import settings
from link_preserver.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class CacheRepository(BaseRepository):
    """MongoDB-backed store for ``TimedCache`` entries.

    Each document is ``{key, value, updated_at}`` where ``value`` is the
    serialized cache entry exactly as ``TimedCache`` wrote it.  Expiry is
    decided by ``TimedCache`` on read.  A TTL index on ``updated_at`` lets
    MongoDB purge entries nobody reads again once the longest namespace TTL
    has passed.
    """

    COLLECTION_NAME = CollectionNames.LINK_CACHE

    async def ensure_indexes(self) -> None:
        await self._col.create_index("key", unique=True)
        longest_ttl_days = max(settings.liveness_ttl_days, settings.archive_ttl_days)
        await self._col.create_index(
            "updated_at", expireAfterSeconds=int(longest_ttl_days * 86_400)
        )

    async def read(self, key: str) -> str | None:
        document = await self._col.find_one({"key": key}, {"_id": 0, "value": 1})
        if document is None:
            return None
        return document.get("value")

    async def write(self, key: str, value: str) -> None:
        """Insert or replace the entry stored under *key*.

        Raises:
            RuntimeError: on any MongoDB failure.
        """
        try:
            await self._col.update_one(
                {"key": key},
                {"$set": {"value": value, "updated_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except PyMongoError as exc:
            logger.warning("MongoDB cache write failed for key=%s: %s", key, exc)
            raise RuntimeError("Cache write error") from exc

    async def remove(self, key: str) -> None:
        await self._col.delete_one({"key": key})
