"""Abstract base class for the MongoDB repositories.

A repository wraps exactly one Motor collection.  To add one:
    1. Add the collection name to ``CollectionNames``.
    2. Subclass ``BaseRepository``, set ``COLLECTION_NAME`` and override
       ``ensure_indexes()``.
    3. Build it in the app lifespan (``main.py``) with ``from_db``.
"""

from __future__ import annotations

from abc import ABC
from typing import ClassVar, TypeVar

from motor.motor_asyncio import AsyncIOMotorCollection

from link_preserver.core.database import DatabaseManager

T = TypeVar("T", bound="BaseRepository")


class BaseRepository(ABC):
    """Binds a repository to its Motor collection."""

    COLLECTION_NAME: ClassVar[str]

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._col = collection

    @classmethod
    def from_db(cls: type[T], db: DatabaseManager) -> T:
        """Instantiate the repository from the connected ``DatabaseManager``.

        Usage::

            store = CacheRepository.from_db(db)
        """
        return cls(db.get_collection(cls.COLLECTION_NAME))

    async def ensure_indexes(self) -> None:
        """Create collection indexes.  Called once at startup; no-op by default."""
