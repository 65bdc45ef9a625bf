"""Chat services: message store, identity, attachments and realtime feeds."""

from .attachments import AttachmentFile, AttachmentUploader, UploadedAttachment
from .chat import ChatServices
from .errors import (
    ChatError,
    InvalidAttachmentError,
    PersistenceError,
    ResolutionError,
    SubscriptionError,
    UploadError,
)
from .identity import UNKNOWN_USER, IdentityResolver, NameResolution
from .message_list import ConversationView, render_message, render_transcript
from .message_store import MessageStore, ReadReceipt
from .subscriptions import ChatSubscription, RealtimeSubscriptionManager
from .viewer import Viewer

__all__ = [
    "AttachmentFile",
    "AttachmentUploader",
    "ChatError",
    "ChatServices",
    "ChatSubscription",
    "ConversationView",
    "IdentityResolver",
    "InvalidAttachmentError",
    "MessageStore",
    "NameResolution",
    "PersistenceError",
    "ReadReceipt",
    "RealtimeSubscriptionManager",
    "ResolutionError",
    "SubscriptionError",
    "UNKNOWN_USER",
    "UploadError",
    "UploadedAttachment",
    "Viewer",
    "render_message",
    "render_transcript",
]
