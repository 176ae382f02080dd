from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, TypedDict

from fastapi.encoders import jsonable_encoder


MessageType = Literal["text", "image", "video"]

MEDIA_KINDS = ("image", "video")
REDACTED_TEXT = "This message was deleted"


class MessageDocument(TypedDict, total=False):
    _id: str
    from_user_id: str
    to_user_id: str
    text: str
    message_type: MessageType
    media_url: str
    # one-way flags
    seen: bool
    deleted_for: List[str]
    is_deleted_everyone: bool
    created_at: datetime
    updated_at: datetime


def is_visible(viewer: str, message: Mapping[str, Any]) -> bool:
    """Soft-delete rule on read: hidden from the users in ``deleted_for`` unless redacted.

    A message deleted for everyone reads the same for both participants, so the
    redaction wins over an earlier per-user hide.
    """
    return bool(message.get("is_deleted_everyone")) or viewer not in (message.get("deleted_for") or [])


def visible_to(viewer: str) -> Dict[str, Any]:
    # Mongo's $ne on an array field matches documents whose array lacks the value.
    # Used where the literal deleted_for test is wanted (unread counting, clear).
    return {"deleted_for": {"$ne": viewer}}


def visible_on_read(viewer: str) -> Dict[str, Any]:
    # store-side form of is_visible()
    return {"$or": [visible_to(viewer), {"is_deleted_everyone": True}]}


def pair_filter(user_a: str, user_b: str) -> Dict[str, Any]:
    return {
        "$or": [
            {"from_user_id": user_a, "to_user_id": user_b},
            {"from_user_id": user_b, "to_user_id": user_a},
        ]
    }


def participant_filter(user_id: str) -> Dict[str, Any]:
    return {"$or": [{"from_user_id": user_id}, {"to_user_id": user_id}]}


def counterpart_of(viewer: str, message: Mapping[str, Any]) -> str:
    if message.get("from_user_id") == viewer:
        return message["to_user_id"]
    return message["from_user_id"]


def redaction_fields(now: datetime) -> Dict[str, Any]:
    return {
        "is_deleted_everyone": True,
        "text": REDACTED_TEXT,
        "message_type": "text",
        "media_url": "",
        "updated_at": now,
    }


def to_wire(message: Mapping[str, Any]) -> Dict[str, Any]:
    """JSON-safe copy of a stored message (ids as strings, datetimes as ISO 8601)."""
    doc = dict(message)
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    doc["deleted_for"] = list(doc.get("deleted_for") or [])
    return jsonable_encoder(doc)
