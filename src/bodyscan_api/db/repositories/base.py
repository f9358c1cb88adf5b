"""Base repository class with common database operations."""

from typing import Any, Generic, TypeVar

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel

from bodyscan_api.utils.dates import utc_now

T = TypeVar("T", bound=BaseModel)


class BaseRepository(Generic[T]):
    """
    Base repository providing common CRUD operations.

    Documents use string `_id` keys (scan ids, instance keys). Subclasses
    set `model_class`; models exposing `from_mongo` handle the `_id`
    mapping themselves.
    """

    model_class: type[T] | None = None

    def __init__(self, collection: AsyncIOMotorCollection):
        """
        Initialize repository with a MongoDB collection.

        Args:
            collection: Motor collection instance
        """
        self.collection = collection

    def _to_model(self, doc: dict[str, Any] | None) -> T | dict[str, Any] | None:
        """Convert MongoDB document to Pydantic model if model_class is set."""
        if doc is None:
            return None
        if self.model_class is None:
            return doc
        from_mongo = getattr(self.model_class, "from_mongo", None)
        if from_mongo is not None:
            return from_mongo(doc)
        doc = dict(doc)
        doc.pop("_id", None)
        return self.model_class.model_validate(doc)

    def _to_models(self, docs: list[dict[str, Any]]) -> list[T | dict[str, Any]]:
        """Convert list of MongoDB documents to models."""
        return [self._to_model(doc) for doc in docs if doc is not None]

    async def find_by_id(self, id: str) -> T | dict[str, Any] | None:
        """
        Find document by its string `_id`.

        Args:
            id: Document id

        Returns:
            Document as model or dict, or None if not found
        """
        doc = await self.collection.find_one({"_id": id})
        return self._to_model(doc)

    async def find_many(
        self,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        limit: int = 100,
        skip: int = 0,
    ) -> list[T | dict[str, Any]]:
        """
        Find multiple documents matching filter.

        Args:
            filter: MongoDB query filter
            sort: List of (field, direction) tuples
            limit: Maximum documents to return
            skip: Number of documents to skip

        Returns:
            List of documents as models or dicts
        """
        cursor = self.collection.find(filter or {})

        if sort:
            cursor = cursor.sort(sort)

        cursor = cursor.skip(skip).limit(limit)
        docs = await cursor.to_list(length=limit)
        return self._to_models(docs)

    async def find_one(
        self,
        filter: dict[str, Any],
        sort: list[tuple[str, int]] | None = None,
    ) -> T | dict[str, Any] | None:
        """
        Find single document matching filter.

        Args:
            filter: MongoDB query filter
            sort: Optional ordering used to pick among several matches

        Returns:
            Document as model or dict, or None if not found
        """
        if sort:
            doc = await self.collection.find_one(filter, sort=sort)
        else:
            doc = await self.collection.find_one(filter)
        return self._to_model(doc)

    async def insert_one(self, document: dict[str, Any]) -> str:
        """
        Insert a single document.

        Args:
            document: Document to insert

        Returns:
            Inserted document ID as string
        """
        now = utc_now()
        document.setdefault("created_at", now)
        document.setdefault("updated_at", now)

        result = await self.collection.insert_one(document)
        return str(result.inserted_id)

    async def update_where(
        self,
        filter: dict[str, Any],
        fields: dict[str, Any],
    ) -> bool:
        """
        `$set` a field group on the first document matching filter.

        Args:
            filter: MongoDB query filter (may include preconditions)
            fields: Fields to set; `updated_at` is stamped automatically

        Returns:
            True if a document matched and was modified
        """
        update = {"$set": {**fields, "updated_at": utc_now()}}
        result = await self.collection.update_one(filter, update)
        return result.modified_count > 0
