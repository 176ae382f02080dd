import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile, WebSocket
from fastapi.responses import StreamingResponse

from courier.core.errors import Unauthenticated
from courier.core.settings import settings
from courier.database.connection import mongo_db_dependency
from courier.models.message import to_wire
from courier.repositories.message_repository import MessageRepository
from courier.repositories.user_repository import UserRepository
from courier.schemas.message import DeleteMessageRequest, PeerRequest, SendMessageRequest
from courier.services.chat_service import ChatService
from courier.services.dispatcher import DeliveryDispatcher
from courier.services.media import MediaStore, get_media_store
from courier.utils.connection_registry import Channel, ConnectionRegistry, get_registry
from courier.utils.dependencies import get_current_user_id
from courier.utils.security import user_id_from_token
from courier.utils.streams import pump_websocket, sse_stream


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


def get_chat_service(db = Depends(mongo_db_dependency)) -> ChatService:
    return ChatService(MessageRepository(db))


def get_dispatcher(
    db = Depends(mongo_db_dependency),
    service: ChatService = Depends(get_chat_service),
    registry: ConnectionRegistry = Depends(get_registry),
) -> DeliveryDispatcher:
    return DeliveryDispatcher(service, registry, UserRepository(db))


def _authorize_stream(token: Optional[str], user_id: str) -> None:
    if user_id_from_token(token) != user_id:
        raise Unauthenticated("Token does not match the requested stream")


@router.get("/stream/{user_id}")
async def stream_events(user_id: str, token: Optional[str] = None, registry: ConnectionRegistry = Depends(get_registry)):
    _authorize_stream(token, user_id)
    channel = Channel(user_id)

    async def _events():
        # registered on first iteration; a body never started leaves no entry
        registry.register(user_id, channel)
        logger.info("SSE client connected: %s", user_id)
        try:
            async for chunk in sse_stream(channel, settings.sse_keepalive_seconds):
                yield chunk
        finally:
            channel.close()
            registry.unregister(user_id, channel)
            logger.info("SSE client disconnected: %s", user_id)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.websocket("/ws/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str, registry: ConnectionRegistry = Depends(get_registry)):
    # JWT via query ?token=...
    try:
        _authorize_stream(websocket.query_params.get("token"), user_id)
    except Unauthenticated as err:
        await websocket.close(code=4403 if websocket.query_params.get("token") else 4401, reason=err.message)
        return

    await websocket.accept()
    channel = Channel(user_id)
    registry.register(user_id, channel)
    logger.info("WebSocket client connected: %s", user_id)
    try:
        await pump_websocket(websocket, channel)
    finally:
        registry.unregister(user_id, channel)
        logger.info("WebSocket client disconnected: %s", user_id)


@router.post("/send")
async def send_message(
    body: SendMessageRequest,
    background_tasks: BackgroundTasks,
    current_user_id: str = Depends(get_current_user_id),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
):
    saved = await dispatcher.send(current_user_id, body.to_user_id, body.text, body.media, background_tasks)
    return {"success": True, "message": to_wire(saved)}


@router.post("/send/upload")
async def send_with_upload(
    background_tasks: BackgroundTasks,
    to_user_id: str = Form(...),
    text: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    current_user_id: str = Depends(get_current_user_id),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
    media_store: MediaStore = Depends(get_media_store),
):
    media = None
    if file is not None:
        data = await file.read()
        uploaded = await media_store.upload(data, file.filename or "", file.content_type)
        media = uploaded.as_ref()
    saved = await dispatcher.send(current_user_id, to_user_id, text, media, background_tasks)
    return {"success": True, "message": to_wire(saved)}


@router.post("/history")
async def get_history(
    body: PeerRequest,
    current_user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
):
    messages = await service.get_history(current_user_id, body.to_user_id)
    return {"success": True, "messages": [to_wire(m) for m in messages]}


@router.post("/delete")
async def delete_message(
    body: DeleteMessageRequest,
    background_tasks: BackgroundTasks,
    current_user_id: str = Depends(get_current_user_id),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
):
    redacted = await dispatcher.delete(current_user_id, body.message_id, body.type, background_tasks)
    if redacted is None:
        return {"success": True}
    return {"success": True, "message": to_wire(redacted)}


@router.post("/clear")
async def clear_chat(
    body: PeerRequest,
    current_user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
):
    hidden = await service.clear_chat(current_user_id, body.to_user_id)
    return {"success": True, "cleared": hidden}
