from typing import Dict, Iterable

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from courier.models.user import PUBLIC_PROFILE_FIELDS, UserDocument


def _id_candidates(user_id: str) -> list:
    # Identity-provider ids are opaque strings; legacy profiles may be keyed by ObjectId
    candidates: list = [user_id]
    if ObjectId.is_valid(user_id):
        candidates.append(ObjectId(user_id))
    return candidates


class UserRepository:
    """Read-only view over the profile documents owned by the user service."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_public_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserDocument]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        lookup: list = []
        for user_id in ids:
            lookup.extend(_id_candidates(user_id))
        projection = {field: 1 for field in PUBLIC_PROFILE_FIELDS}
        profiles: Dict[str, UserDocument] = {}
        async for doc in self._collection.find({"_id": {"$in": lookup}}, projection):
            doc["_id"] = str(doc["_id"])
            profiles[doc["_id"]] = doc
        return {user_id: profiles.get(user_id) or {"_id": user_id} for user_id in ids}
