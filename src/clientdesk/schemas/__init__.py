"""
Pydantic schemas for chat data and API request/response models.
"""

from .chat_message import (
    AttachmentResponse,
    AttachmentType,
    ChatMessage,
    ChatMessageCreate,
    ConversationSummary,
)

__all__ = [
    "AttachmentResponse",
    "AttachmentType",
    "ChatMessage",
    "ChatMessageCreate",
    "ConversationSummary",
]
