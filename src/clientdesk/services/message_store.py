"""Message store access for client conversations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from clientdesk.backend.database import Database
from clientdesk.backend.errors import DatabaseError
from clientdesk.schemas.chat_message import AttachmentType, ChatMessage, ConversationSummary
from clientdesk.services.errors import PersistenceError
from clientdesk.services.identity import IdentityResolver

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "client_messages"
CLIENTS_TABLE = "clients"
ATTACHMENT_PREVIEW = "Attachment"


@dataclass(frozen=True)
class ReadReceipt:
    """Outcome of a best-effort read mark.

    `updated` is False both when the message was already read and when the
    write failed; `error` tells the two apart.
    """

    message_id: str
    updated: bool = False
    error: PersistenceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MessageStore:
    """Create, read and read-mark chat messages."""

    def __init__(self, database: Database, resolver: IdentityResolver) -> None:
        self.database = database
        self.resolver = resolver

    async def send_message(
        self,
        client_id: str,
        sender_id: str,
        message: str | None,
        is_from_client: bool,
        attachment_url: str | None = None,
        attachment_type: AttachmentType | None = None,
    ) -> ChatMessage | None:
        """Persist a new message.

        Returns None, without writing anything, when the trimmed text is empty
        and there is no attachment.

        Raises:
            PersistenceError: If the insert is rejected.
        """
        text = (message or "").strip()
        if not text and not attachment_url:
            logger.debug("Ignoring empty message for client %s", client_id)
            return None

        record = {
            "client_id": client_id,
            "sender_id": sender_id,
            "message": text,
            "is_from_client": is_from_client,
            "attachment_url": attachment_url,
            "attachment_type": attachment_type if attachment_url else None,
            "is_read": False,
        }
        try:
            row = await self.database.insert(MESSAGES_TABLE, record)
        except DatabaseError as exc:
            raise PersistenceError(f"Could not send message to client {client_id}") from exc

        logger.info(
            "Message %s stored: client=%s from_client=%s attachment=%s",
            row["id"],
            client_id,
            is_from_client,
            bool(attachment_url),
        )
        return ChatMessage.model_validate(row)

    async def fetch_conversation(self, client_id: str) -> list[ChatMessage]:
        """Return the conversation oldest first, with sender names resolved.

        Raises:
            PersistenceError: If the messages cannot be read.
        """
        try:
            rows = await self.database.select(
                MESSAGES_TABLE,
                {"client_id": client_id},
                order=(("created_at", True), ("id", True)),
            )
        except DatabaseError as exc:
            raise PersistenceError(f"Could not load conversation {client_id}") from exc

        names = await self.resolver.resolve_names(row["sender_id"] for row in rows)
        logger.debug("Fetched %d message(s) for client %s", len(rows), client_id)
        return [
            ChatMessage.model_validate({**row, "sender_name": names[row["sender_id"]]})
            for row in rows
        ]

    async def get_message(self, message_id: str) -> ChatMessage | None:
        """Return a single stored message without name resolution."""
        try:
            rows = await self.database.select(MESSAGES_TABLE, {"id": message_id}, limit=1)
        except DatabaseError as exc:
            raise PersistenceError(f"Could not load message {message_id}") from exc
        return ChatMessage.model_validate(rows[0]) if rows else None

    async def mark_read(self, message_id: str) -> ReadReceipt:
        """Flip `is_read` to true. Never raises; failures are logged."""
        try:
            updated = await self.database.update_where(
                MESSAGES_TABLE,
                {"id": message_id, "is_read": False},
                {"is_read": True},
            )
        except DatabaseError as exc:
            logger.warning("Could not mark message %s as read: %s", message_id, exc)
            error = PersistenceError(f"Could not mark message {message_id} as read")
            error.__cause__ = exc
            return ReadReceipt(message_id=message_id, error=error)
        return ReadReceipt(message_id=message_id, updated=updated > 0)

    async def mark_conversation_read(self, client_id: str, viewer_is_admin: bool) -> int:
        """Mark every unread message addressed to the viewer as read.

        Best effort like `mark_read`: returns 0 when the update fails.
        """
        try:
            updated = await self.database.update_where(
                MESSAGES_TABLE,
                {"client_id": client_id, "is_from_client": viewer_is_admin, "is_read": False},
                {"is_read": True},
            )
        except DatabaseError as exc:
            logger.warning("Could not mark conversation %s as read: %s", client_id, exc)
            return 0
        if updated:
            logger.debug("Marked %d message(s) read in conversation %s", updated, client_id)
        return updated

    async def list_conversations(self) -> list[ConversationSummary]:
        """Summarise every client conversation for the admin inbox.

        Reads the latest message of each client and one grouped count of
        unread client messages, never the full history. Conversations with
        unread client messages come first, then the most recently active ones.

        Raises:
            PersistenceError: If clients or messages cannot be read.
        """
        try:
            clients = await self.database.select(CLIENTS_TABLE, order=(("name", True),))
            unread = await self.database.count_by(
                MESSAGES_TABLE,
                "client_id",
                {"is_from_client": True, "is_read": False},
            )
            latest = await asyncio.gather(
                *(self._latest_message(client["id"]) for client in clients)
            )
        except DatabaseError as exc:
            raise PersistenceError("Could not load conversations") from exc

        summaries = [
            ConversationSummary(
                client_id=client["id"],
                name=client["name"],
                company=client.get("company") or "",
                avatar=client.get("avatar"),
                unread_count=unread.get(client["id"], 0),
                last_message=(last["message"] or ATTACHMENT_PREVIEW) if last else None,
                last_message_at=last["created_at"] if last else None,
            )
            for client, last in zip(clients, latest)
        ]
        summaries.sort(
            key=lambda summary: (
                summary.unread_count == 0,
                -(summary.last_message_at.timestamp() if summary.last_message_at else 0.0),
            )
        )
        return summaries

    async def _latest_message(self, client_id: str) -> dict | None:
        rows = await self.database.select(
            MESSAGES_TABLE,
            {"client_id": client_id},
            order=(("created_at", False), ("id", False)),
            limit=1,
            columns=("message", "created_at"),
        )
        return rows[0] if rows else None
