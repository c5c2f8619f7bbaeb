from __future__ import annotations

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

from link_preserver.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Process-wide MongoDB connection backing the persistent link cache.

    Only used when ``settings.cache_backend == "mongo"``.  Use the
    module-level ``db`` instance; do not instantiate directly.

    Lifecycle::

        await db.connect()     # FastAPI lifespan startup
        ...
        await db.disconnect()  # FastAPI lifespan shutdown
    """

    _instance: DatabaseManager | None = None
    _client: AsyncIOMotorClient | None = None

    def __new__(cls) -> DatabaseManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def connect(self) -> None:
        """Open the Motor client and ping the server once."""
        self._client = AsyncIOMotorClient(
            settings.mongo_uri,
            maxPoolSize=settings.mongo_max_pool_size,
            serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
        )
        await self._client.admin.command("ping")
        logger.info("Link cache connected to MongoDB at %s.", settings.mongo_uri)

    async def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Link cache disconnected from MongoDB.")

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        """Return the named collection from ``settings.mongo_db``."""
        if self._client is None:
            raise RuntimeError(
                "DatabaseManager is not connected. Call connect() first."
            )
        return self._client[settings.mongo_db][name]


#: Module-level singleton shared by the lifespan and the repositories.
db: DatabaseManager = DatabaseManager()
