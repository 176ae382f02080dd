import logging
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks

from courier.core.errors import ValidationError
from courier.models.message import counterpart_of, to_wire
from courier.repositories.user_repository import UserRepository
from courier.schemas.message import MediaRef
from courier.services.chat_service import ChatService
from courier.utils.connection_registry import ConnectionRegistry


logger = logging.getLogger(__name__)

MESSAGE_CREATED = "message.created"
MESSAGE_UPDATED = "message.updated"


def build_event(kind: str, message: Dict[str, Any], sender: Dict[str, Any]) -> Dict[str, Any]:
    # Both kinds carry the full record; receivers upsert by message id.
    return {"kind": kind, "message": {**to_wire(message), "from_user": sender}}


class DeliveryDispatcher:
    """Persist first, answer the caller, then push at most once.

    Push runs as a background task after the response has been sent. Whether it
    reaches anyone is never reported back; clients without a channel catch up by
    polling the conversation list.
    """

    def __init__(self, chat_service: ChatService, registry: ConnectionRegistry, user_repo: UserRepository) -> None:
        self._chat_service = chat_service
        self._registry = registry
        self._user_repo = user_repo

    async def send(
        self,
        sender_id: str,
        receiver_id: str,
        text: Optional[str],
        media: Optional[MediaRef],
        background_tasks: BackgroundTasks,
    ) -> Dict[str, Any]:
        saved = await self._chat_service.send_message(sender_id, receiver_id, text, media)
        background_tasks.add_task(self.push, MESSAGE_CREATED, saved, receiver_id)
        return saved

    async def delete(
        self,
        user_id: str,
        message_id: str,
        delete_type: str,
        background_tasks: BackgroundTasks,
    ) -> Optional[Dict[str, Any]]:
        if delete_type == "me":
            await self._chat_service.delete_for_me(user_id, message_id)
            return None
        if delete_type == "everyone":
            redacted = await self._chat_service.delete_for_everyone(user_id, message_id)
            background_tasks.add_task(self.push, MESSAGE_UPDATED, redacted, counterpart_of(user_id, redacted))
            return redacted
        raise ValidationError(f"Unknown delete type: {delete_type}")

    async def push(self, kind: str, message: Dict[str, Any], recipient_id: str) -> bool:
        if not self._registry.is_connected(recipient_id):
            logger.debug("No push channel for %s; %s %s dropped", recipient_id, kind, message.get("_id"))
            return False
        try:
            profiles = await self._user_repo.get_public_profiles([message["from_user_id"]])
            event = build_event(kind, message, profiles[message["from_user_id"]])
            delivered = self._registry.publish(recipient_id, event)
        except Exception:
            logger.exception("Push of %s %s to %s failed", kind, message.get("_id"), recipient_id)
            return False
        if not delivered:
            logger.debug("Push channel for %s closed before %s %s", recipient_id, kind, message.get("_id"))
        return delivered
