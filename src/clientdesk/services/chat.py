"""Wiring of the chat core on top of a backend context."""

from __future__ import annotations

from dataclasses import dataclass

from clientdesk.backend.context import BackendContext
from clientdesk.core.settings import Settings
from clientdesk.services.attachments import AttachmentUploader
from clientdesk.services.identity import IdentityResolver
from clientdesk.services.message_store import MessageStore
from clientdesk.services.subscriptions import RealtimeSubscriptionManager


@dataclass(frozen=True)
class ChatServices:
    """The chat entry points exposed to the HTTP layer."""

    resolver: IdentityResolver
    store: MessageStore
    uploader: AttachmentUploader
    subscriptions: RealtimeSubscriptionManager

    @classmethod
    def from_context(cls, context: BackendContext, settings: Settings) -> ChatServices:
        resolver = IdentityResolver(context.database)
        store = MessageStore(context.database, resolver)
        uploader = AttachmentUploader(
            context.storage,
            bucket=settings.chat_bucket,
            max_bytes=settings.max_attachment_bytes,
            cache_control=settings.attachment_cache_control,
        )
        subscriptions = RealtimeSubscriptionManager(context.database, store, resolver)
        return cls(
            resolver=resolver,
            store=store,
            uploader=uploader,
            subscriptions=subscriptions,
        )
