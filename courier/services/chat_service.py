import logging
from typing import Any, Dict, List, Optional

from courier.core.errors import NotFound, Unauthorized, ValidationError
from courier.models.message import MEDIA_KINDS
from courier.repositories.message_repository import MessageRepository
from courier.schemas.message import MediaRef


logger = logging.getLogger(__name__)


class ChatService:
    """Message ledger lifecycle: create, read-and-mark-seen, hide, redact."""

    def __init__(self, message_repo: MessageRepository) -> None:
        self._message_repo = message_repo

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        text: Optional[str] = None,
        media: Optional[MediaRef] = None,
    ) -> Dict[str, Any]:
        if sender_id == receiver_id:
            raise ValidationError("Cannot send a message to yourself")
        text = (text or "").strip()
        if media is not None and media.type not in MEDIA_KINDS:
            raise ValidationError(f"Unsupported media type: {media.type}")
        if not text and media is None:
            raise ValidationError("Message must contain text or media")
        saved = await self._message_repo.save_message(
            from_user_id=sender_id,
            to_user_id=receiver_id,
            text=text,
            message_type=media.type if media else "text",
            media_url=media.url if media else "",
        )
        logger.debug("Stored message %s from %s to %s", saved["_id"], sender_id, receiver_id)
        return saved

    async def get_history(self, viewer_id: str, counterpart_id: str) -> List[Dict[str, Any]]:
        """Visible messages of the pair, oldest first; marks the counterpart's messages seen.

        Listing and marking are two separate store operations. A message that
        arrives between them can end up seen without having been listed.
        """
        messages = await self._message_repo.list_pair(viewer_id, counterpart_id)
        marked = await self._message_repo.mark_seen_from(counterpart_id, viewer_id)
        if marked:
            logger.debug("Marked %d messages from %s to %s as seen", marked, counterpart_id, viewer_id)
        return messages

    async def delete_for_me(self, user_id: str, message_id: str) -> None:
        if await self._message_repo.hide_for(message_id, user_id):
            return
        if await self._message_repo.get_by_id(message_id) is None:
            raise NotFound()
        raise Unauthorized("You are not part of this conversation")

    async def delete_for_everyone(self, user_id: str, message_id: str) -> Dict[str, Any]:
        redacted = await self._message_repo.redact(message_id, user_id)
        if redacted is not None:
            logger.info("Message %s deleted for everyone by %s", message_id, user_id)
            return redacted
        if await self._message_repo.get_by_id(message_id) is None:
            raise NotFound()
        raise Unauthorized("Only the sender can delete a message for everyone")

    async def clear_chat(self, user_id: str, counterpart_id: str) -> int:
        return await self._message_repo.hide_pair_for(user_id, counterpart_id)
