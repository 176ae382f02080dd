import functools
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from courier.core.errors import StoreError
from courier.models.message import (
    MessageDocument,
    pair_filter,
    participant_filter,
    redaction_fields,
    visible_on_read,
    visible_to,
)


ASCENDING_ORDER = [("created_at", ASCENDING), ("_id", ASCENDING)]
# _id breaks created_at ties so repeated queries over unchanged data agree
DESCENDING_ORDER = [("created_at", DESCENDING), ("_id", DESCENDING)]


def _store_call(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as err:
            raise StoreError(str(err)) from err
    return wrapper


def _to_object_id(message_id: str) -> Optional[ObjectId]:
    if isinstance(message_id, ObjectId):
        return message_id
    if not message_id or not ObjectId.is_valid(message_id):
        return None
    return ObjectId(message_id)


def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc.get("_id"))
    doc["deleted_for"] = list(doc.get("deleted_for") or [])
    return doc


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._db = db
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("from_user_id", ASCENDING), ("to_user_id", ASCENDING), ("created_at", DESCENDING)]
        )
        await self.collection.create_index([("to_user_id", ASCENDING), ("seen", ASCENDING)])

    @_store_call
    async def save_message(
        self,
        from_user_id: str,
        to_user_id: str,
        text: str,
        message_type: str,
        media_url: str = "",
    ) -> MessageDocument:
        now = self._clock()
        doc: Dict[str, Any] = {
            "from_user_id": from_user_id,
            "to_user_id": to_user_id,
            "text": text,
            "message_type": message_type,
            "media_url": media_url,
            "seen": False,
            "deleted_for": [],
            "is_deleted_everyone": False,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    @_store_call
    async def get_by_id(self, message_id: str) -> Optional[MessageDocument]:
        oid = _to_object_id(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return _normalize(doc) if doc else None

    @_store_call
    async def list_pair(self, viewer: str, counterpart: str) -> List[MessageDocument]:
        query = {"$and": [pair_filter(viewer, counterpart), visible_on_read(viewer)]}
        cursor = self.collection.find(query).sort(ASCENDING_ORDER)
        items = await cursor.to_list(length=None)
        return [_normalize(it) for it in items]

    @_store_call
    async def mark_seen_from(self, sender_id: str, receiver_id: str) -> int:
        result = await self.collection.update_many(
            {"from_user_id": sender_id, "to_user_id": receiver_id, "seen": False},
            {"$set": {"seen": True}},
        )
        return result.modified_count or 0

    @_store_call
    async def hide_for(self, message_id: str, user_id: str) -> bool:
        """Add ``user_id`` to ``deleted_for``; False when no such message involves the user."""
        oid = _to_object_id(message_id)
        if oid is None:
            return False
        result = await self.collection.update_one(
            {"_id": oid, **participant_filter(user_id)},
            {"$addToSet": {"deleted_for": user_id}},
        )
        return bool(result.matched_count)

    @_store_call
    async def hide_pair_for(self, user_id: str, counterpart_id: str) -> int:
        result = await self.collection.update_many(
            {**pair_filter(user_id, counterpart_id), **visible_to(user_id)},
            {"$addToSet": {"deleted_for": user_id}},
        )
        return result.modified_count or 0

    @_store_call
    async def redact(self, message_id: str, sender_id: str) -> Optional[MessageDocument]:
        oid = _to_object_id(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid, "from_user_id": sender_id},
            {"$set": redaction_fields(self._clock())},
            return_document=ReturnDocument.AFTER,
        )
        return _normalize(doc) if doc else None

    async def iter_visible_for(self, user_id: str, since: Optional[datetime] = None) -> AsyncIterator[MessageDocument]:
        query: Dict[str, Any] = {"$and": [participant_filter(user_id), visible_on_read(user_id)]}
        if since is not None:
            query["created_at"] = {"$gte": since}
        try:
            async for doc in self.collection.find(query).sort(DESCENDING_ORDER):
                yield _normalize(doc)
        except PyMongoError as err:
            raise StoreError(str(err)) from err

    @_store_call
    async def count_unread(self, receiver_id: str) -> int:
        return await self.collection.count_documents(
            {"to_user_id": receiver_id, "seen": False, **visible_to(receiver_id)}
        )
