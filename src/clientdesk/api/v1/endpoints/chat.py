"""Chat endpoints for the admin dashboard and the client portal."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import (
    APIRouter,
    File,
    HTTPException,
    Query,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from clientdesk.backend.errors import DatabaseError
from clientdesk.core.security import InvalidTokenError, decode_access_token
from clientdesk.schemas.chat_message import (
    AttachmentResponse,
    ChatMessage,
    ChatMessageCreate,
    ConversationSummary,
)
from clientdesk.services.attachments import AttachmentFile
from clientdesk.services.chat import ChatServices
from clientdesk.services.errors import (
    InvalidAttachmentError,
    PersistenceError,
    SubscriptionError,
    UploadError,
)
from clientdesk.services.message_list import ConversationView, render_message, render_transcript
from clientdesk.services.subscriptions import ChatSubscription
from clientdesk.services.viewer import Viewer

from ..dependencies import ChatServicesDep, ConversationDep, CurrentViewerDep, load_viewer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

WS_POLICY_VIOLATION = 1008
WS_INTERNAL_ERROR = 1011


def _unavailable(err: PersistenceError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(err),
    )


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    viewer: CurrentViewerDep,
    chat: ChatServicesDep,
) -> list[ConversationSummary]:
    """List every client conversation, unread first (admins only)."""
    if not viewer.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can list conversations",
        )
    try:
        return await chat.store.list_conversations()
    except PersistenceError as err:
        raise _unavailable(err) from err


@router.get("/{client_id}/messages", response_model=list[ChatMessage])
async def get_messages(
    client_id: ConversationDep,
    viewer: CurrentViewerDep,
    chat: ChatServicesDep,
    mark_read: bool = Query(True),
) -> list[ChatMessage]:
    """Return the conversation oldest first with sender names."""
    if mark_read:
        await chat.store.mark_conversation_read(client_id, viewer.is_admin)
    try:
        return await chat.store.fetch_conversation(client_id)
    except PersistenceError as err:
        raise _unavailable(err) from err


@router.get("/{client_id}/transcript")
async def get_transcript(
    client_id: ConversationDep,
    viewer: CurrentViewerDep,
    chat: ChatServicesDep,
) -> dict[str, Any]:
    """Return the conversation rendered for display, grouped by day."""
    try:
        messages = await chat.store.fetch_conversation(client_id)
    except PersistenceError as err:
        raise _unavailable(err) from err
    view = ConversationView(client_id, messages)
    return {"client_id": client_id, **render_transcript(view.messages, viewer.user_id)}


@router.post(
    "/{client_id}/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=ChatMessage,
    responses={204: {"description": "Nothing to send"}},
)
async def send_message(
    client_id: ConversationDep,
    payload: ChatMessageCreate,
    viewer: CurrentViewerDep,
    chat: ChatServicesDep,
):
    """Send a message as the current viewer."""
    try:
        message = await chat.store.send_message(
            client_id,
            viewer.user_id,
            payload.message,
            is_from_client=not viewer.is_admin,
            attachment_url=payload.attachment_url,
            attachment_type=payload.attachment_type,
        )
    except PersistenceError as err:
        raise _unavailable(err) from err

    if message is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    sender_name = await chat.resolver.resolve_name(viewer.user_id)
    return message.model_copy(update={"sender_name": sender_name})


@router.post(
    "/{client_id}/attachments",
    status_code=status.HTTP_201_CREATED,
    response_model=AttachmentResponse,
)
async def upload_attachment(
    client_id: ConversationDep,
    viewer: CurrentViewerDep,
    chat: ChatServicesDep,
    file: UploadFile = File(...),
) -> AttachmentResponse:
    """Upload a file to attach to a later message."""
    attachment = AttachmentFile(
        filename=file.filename or "attachment",
        content_type=file.content_type,
        data=await file.read(),
    )
    try:
        uploaded = await chat.uploader.upload(attachment, client_id, is_admin=viewer.is_admin)
    except InvalidAttachmentError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(err),
        ) from err
    except UploadError as err:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to upload file. Please try again.",
        ) from err
    return AttachmentResponse(url=uploaded.url, type=uploaded.type, path=uploaded.path)


@router.put("/messages/{message_id}/read")
async def mark_message_read(
    message_id: str,
    viewer: CurrentViewerDep,
    chat: ChatServicesDep,
) -> dict[str, str]:
    """Mark a message addressed to the current viewer as read."""
    try:
        message = await chat.store.get_message(message_id)
    except PersistenceError as err:
        raise _unavailable(err) from err

    if message is None or not viewer.can_access(message.client_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found",
        )
    if not message.is_incoming_for(viewer.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the recipient can mark a message as read",
        )

    receipt = await chat.store.mark_read(message_id)
    if receipt.error is not None:
        raise _unavailable(receipt.error)
    return {"status": "marked_as_read" if receipt.updated else "already_read"}


class _ConversationStream:
    """Pushes one conversation to a WebSocket until the peer goes away.

    Live `message` frames carry `after_id`, the id the message sorts after
    (None when it sorts first), so clients can place late arrivals without
    re-sorting.
    """

    def __init__(
        self,
        websocket: WebSocket,
        client_id: str,
        viewer: Viewer,
        chat: ChatServices,
    ) -> None:
        self.websocket = websocket
        self.client_id = client_id
        self.viewer = viewer
        self.chat = chat
        self.view = ConversationView(client_id)
        self.subscription: ChatSubscription | None = None
        self._history_sent = False
        self._send_lock = asyncio.Lock()

    async def send(self, payload: dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json(payload)

    async def on_message(self, message: ChatMessage) -> None:
        if self.view.add(message) and self._history_sent:
            await self.send(
                {
                    "type": "message",
                    "after_id": self.view.previous_id(message.id),
                    "message": render_message(message, self.viewer.user_id),
                }
            )

    async def on_notice(self, notice: SubscriptionError) -> None:
        await self.send({"type": "notice", "detail": str(notice)})

    async def connect(self) -> None:
        """(Re)subscribe, then send the full history.

        Subscribing first means nothing inserted while the history loads is
        lost; the view dedups whatever arrives twice.
        """
        if self.subscription is not None:
            await self.subscription.close()
        self._history_sent = False
        self.subscription = await self.chat.subscriptions.subscribe(
            self.client_id, self.viewer, self.on_message, self.on_notice
        )
        await self.chat.store.mark_conversation_read(self.client_id, self.viewer.is_admin)
        self.view.load(await self.chat.store.fetch_conversation(self.client_id))
        await self.send(
            {
                "type": "history",
                "subscribed": self.subscription.active,
                "messages": [
                    render_message(message, self.viewer.user_id) for message in self.view
                ],
            }
        )
        self._history_sent = True

    async def run(self) -> None:
        await self.connect()
        while True:
            try:
                frame = await self.websocket.receive_json()
            except ValueError:
                await self.send({"type": "error", "detail": "Frames must be JSON objects"})
                continue
            kind = frame.get("type") if isinstance(frame, dict) else None
            if kind == "resubscribe":
                await self.connect()
            elif kind == "ping":
                await self.send({"type": "pong"})
            else:
                await self.send({"type": "error", "detail": f"Unknown frame type {kind!r}"})

    async def close(self) -> None:
        if self.subscription is not None:
            await self.subscription.close()


@router.websocket("/{client_id}/ws")
async def conversation_stream(
    websocket: WebSocket,
    client_id: str,
    token: str = Query(...),
) -> None:
    """Stream a conversation: history first, then live messages and notices."""
    chat: ChatServices = websocket.app.state.chat
    try:
        profile_id = decode_access_token(token)
        viewer = await load_viewer(websocket.app.state.backend.database, profile_id)
    except (InvalidTokenError, DatabaseError):
        await websocket.close(code=WS_POLICY_VIOLATION)
        return
    if viewer is None or not viewer.can_access(client_id):
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    await websocket.accept()
    stream = _ConversationStream(websocket, client_id, viewer, chat)
    try:
        await stream.run()
    except WebSocketDisconnect:
        logger.debug("Chat stream for client %s disconnected", client_id)
    except PersistenceError as err:
        logger.error("Chat stream for client %s failed: %s", client_id, err)
        await websocket.close(code=WS_INTERNAL_ERROR)
    finally:
        await stream.close()
