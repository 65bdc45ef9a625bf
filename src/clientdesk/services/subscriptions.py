"""Realtime subscriptions to a single client conversation.

Each subscription owns one realtime channel filtered on `client_id`. For every
inserted row it:

1. decides whether the message is incoming for the viewer (sent by a client
   and viewed by an admin, or the other way round);
2. marks incoming messages read, best effort;
3. resolves `sender_name` with a one-row lookup unless the payload already
   carries it;
4. hands the hydrated message to the registered handler exactly once.

Steps 2 and 3 run concurrently. A channel that ends up in any state other
than SUBSCRIBED (other than the owner's own close) produces one connection
notice; there is no internal retry, callers subscribe again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from clientdesk.backend.database import Database
from clientdesk.backend.realtime import ChannelStatus, InsertEvent, RealtimeChannel, RowFilter
from clientdesk.schemas.chat_message import ChatMessage
from clientdesk.services.errors import SubscriptionError
from clientdesk.services.identity import IdentityResolver
from clientdesk.services.message_store import MESSAGES_TABLE, MessageStore, ReadReceipt
from clientdesk.services.viewer import Viewer

logger = logging.getLogger(__name__)

MessageHandler = Callable[[ChatMessage], Awaitable[None]]
NoticeHandler = Callable[[SubscriptionError], Awaitable[None]]

CONNECTION_LOST = "Connection to chat lost. Reconnect to keep receiving messages."


class ChatSubscription:
    """Disposable handle on a live conversation feed."""

    def __init__(
        self,
        client_id: str,
        viewer: Viewer,
        handler: MessageHandler,
        store: MessageStore,
        resolver: IdentityResolver,
        on_notice: NoticeHandler | None = None,
    ) -> None:
        self.client_id = client_id
        self.viewer = viewer
        self._handler = handler
        self._store = store
        self._resolver = resolver
        self._on_notice = on_notice
        self._channel: RealtimeChannel | None = None
        self._closed = False

    @property
    def status(self) -> ChannelStatus | None:
        return self._channel.status if self._channel else None

    @property
    def active(self) -> bool:
        return not self._closed and self.status is ChannelStatus.SUBSCRIBED

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, database: Database) -> ChatSubscription:
        """Open the realtime channel for this conversation.

        A channel that cannot be established leaves the handle inactive;
        `on_notice` has already been called by the time this returns.
        """
        if self._channel is not None:
            raise SubscriptionError(f"Subscription for client {self.client_id} is already open")
        self._channel = await database.subscribe(
            MESSAGES_TABLE,
            RowFilter("client_id", self.client_id),
            self._handle_insert,
            self._handle_status,
            name=f"client_chat_{self.client_id}",
        )
        return self

    async def close(self) -> None:
        """Stop delivery. Further inserts never reach the handler."""
        if self._closed:
            return
        self._closed = True
        if self._channel is not None:
            await self._channel.close()
        logger.debug("Closed chat subscription for client %s", self.client_id)

    async def drain(self) -> None:
        """Wait for every event received so far to reach the handler."""
        if self._channel is not None:
            await self._channel.drain()

    async def __aenter__(self) -> ChatSubscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _handle_insert(self, event: InsertEvent) -> None:
        if self._closed:
            return
        try:
            message = ChatMessage.model_validate(event.record)
        except ValidationError:
            logger.exception("Discarding malformed chat payload on %s", event.table)
            return

        incoming = message.is_incoming_for(self.viewer.is_admin)
        receipt, sender_name = await asyncio.gather(
            self._mark_if_incoming(message, incoming),
            self._sender_name(message),
        )

        updates: dict[str, object] = {"sender_name": sender_name}
        if receipt is not None and receipt.ok:
            updates["is_read"] = True
        hydrated = message.model_copy(update=updates)

        if self._closed:
            return
        await self._handler(hydrated)

    async def _mark_if_incoming(self, message: ChatMessage, incoming: bool) -> ReadReceipt | None:
        if not incoming or message.is_read:
            return None
        return await self._store.mark_read(message.id)

    async def _sender_name(self, message: ChatMessage) -> str:
        # A pre-populated name is only a hint; resolve whenever it is missing.
        if message.sender_name:
            return message.sender_name
        return await self._resolver.resolve_name(message.sender_id)

    async def _handle_status(self, status: ChannelStatus, error: Exception | None) -> None:
        if status in (ChannelStatus.CONNECTING, ChannelStatus.SUBSCRIBED, ChannelStatus.CLOSED):
            return
        logger.warning(
            "Chat channel for client %s is %s: %s", self.client_id, status.value, error
        )
        if self._on_notice is None:
            return
        notice = SubscriptionError(CONNECTION_LOST)
        notice.__cause__ = error
        await self._on_notice(notice)


class RealtimeSubscriptionManager:
    """Opens conversation subscriptions for admins and clients."""

    def __init__(
        self,
        database: Database,
        store: MessageStore,
        resolver: IdentityResolver,
    ) -> None:
        self.database = database
        self.store = store
        self.resolver = resolver

    async def subscribe(
        self,
        client_id: str,
        viewer: Viewer,
        handler: MessageHandler,
        on_notice: NoticeHandler | None = None,
    ) -> ChatSubscription:
        """Start receiving new messages of `client_id`.

        The returned handle must be closed by the caller. If the channel could
        not be established the handle is inactive and `on_notice` has already
        been called.
        """
        subscription = ChatSubscription(
            client_id,
            viewer,
            handler,
            self.store,
            self.resolver,
            on_notice=on_notice,
        )
        await subscription.open(self.database)
        logger.info(
            "Chat subscription for client %s (%s): %s",
            client_id,
            "admin" if viewer.is_admin else "client",
            subscription.status.value if subscription.status else "unknown",
        )
        return subscription
