from bson import ObjectId
from contextlib import contextmanager
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from logging_config import logger
from services.exceptions import UpstreamError

# Collection names
USERS = "users"
CLIENTS = "clients"
PROJECTS = "projects"
ESTIMATIONS = "estimations"
QUOTATIONS = "quotations"
COMMENTS = "comments"
COUNTERS = "counters"

# Helper to convert ObjectId to string
def serialize_object_id(doc):
    if doc.get("_id") is not None:
        doc["id"] = str(doc["_id"])
        del doc["_id"]
    return doc

@contextmanager
def upstream_errors(action: str):
    """Turn unexpected driver failures into UpstreamError; duplicate keys pass through."""
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.error(f"Entity store failed to {action}: {str(e)}")
        raise UpstreamError(f"Entity store failed to {action}") from e


class EntityStore:
    """
    Document persistence for every workflow collection.

    Documents go in and come out as plain dicts; the Mongo ``_id`` is exposed
    as a string ``id``. References between documents are stored as those
    string ids.
    """

    def __init__(self, db):
        self.db = db

    async def create(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.utcnow()
        doc = {**doc, "created_at": doc.get("created_at") or now, "updated_at": now}
        doc.pop("id", None)
        with upstream_errors(f"create {collection} document"):
            result = await self.db[collection].insert_one(doc)
        doc["_id"] = result.inserted_id
        return serialize_object_id(doc)

    async def find_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        if not doc_id or not ObjectId.is_valid(doc_id):
            return None
        with upstream_errors(f"read {collection} document"):
            doc = await self.db[collection].find_one({"_id": ObjectId(doc_id)})
        return serialize_object_id(doc) if doc else None

    async def find_one(self, collection: str, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with upstream_errors(f"read {collection} document"):
            doc = await self.db[collection].find_one(filter)
        return serialize_object_id(doc) if doc else None

    async def find(
        self,
        collection: str,
        filter: Dict[str, Any],
        skip: int = 0,
        limit: int = 0,
        sort: Optional[List[Tuple[str, int]]] = None,
    ) -> List[Dict[str, Any]]:
        docs = []
        with upstream_errors(f"list {collection} documents"):
            cursor = self.db[collection].find(filter)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            async for doc in cursor:
                docs.append(serialize_object_id(doc))
        return docs

    async def update_by_id(
        self,
        collection: str,
        doc_id: str,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Apply ``patch`` and return the updated document.

        ``expected`` adds field conditions to the match, which turns the
        update into a compare-and-set; None is returned when nothing matched.
        """
        if not ObjectId.is_valid(doc_id):
            return None
        match = {"_id": ObjectId(doc_id), **(expected or {})}
        with upstream_errors(f"update {collection} document"):
            doc = await self.db[collection].find_one_and_update(
                match,
                {"$set": {**patch, "updated_at": datetime.utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        return serialize_object_id(doc) if doc else None

    async def delete_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(doc_id):
            return None
        with upstream_errors(f"delete {collection} document"):
            doc = await self.db[collection].find_one_and_delete({"_id": ObjectId(doc_id)})
        return serialize_object_id(doc) if doc else None

    async def count(self, collection: str, filter: Dict[str, Any]) -> int:
        with upstream_errors(f"count {collection} documents"):
            return await self.db[collection].count_documents(filter)

    async def next_sequence(self, name: str, floor: int = 0) -> int:
        """
        Atomically increment the named counter and return the new value.

        The counter is first raised to at least ``floor`` so it never hands out
        a value at or below one that is already persisted.
        """
        counters = self.db[COUNTERS]
        with upstream_errors("advance counter"):
            try:
                await counters.update_one({"_id": name}, {"$max": {"seq": floor}}, upsert=True)
            except DuplicateKeyError:
                # Lost the upsert race; the counter document exists now
                await counters.update_one({"_id": name}, {"$max": {"seq": floor}})
            doc = await counters.find_one_and_update(
                {"_id": name},
                {"$inc": {"seq": 1}},
                return_document=ReturnDocument.AFTER,
            )
        return doc["seq"]
