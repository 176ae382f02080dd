from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from courier.core.settings import settings
from courier.database.connection import mongo_db_dependency
from courier.repositories.message_repository import MessageRepository
from courier.repositories.user_repository import UserRepository
from courier.services.conversation_service import ConversationService
from courier.utils.dependencies import get_current_user_id


router = APIRouter(prefix="/conversations", tags=["chat"])


def get_conversation_service(db = Depends(mongo_db_dependency)) -> ConversationService:
    window = timedelta(days=settings.recent_window_days) if settings.recent_window_days else None
    return ConversationService(MessageRepository(db), UserRepository(db), window=window)


@router.get("")
async def recent_conversations(
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    items = await service.recent_conversations(current_user_id, limit=limit)
    return {"success": True, "messages": items}


@router.get("/unread")
async def unread_count(
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
):
    count = await service.unread_count(current_user_id)
    return {"success": True, "count": count}
