"""Chat message Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clientdesk.db.time import as_utc

AttachmentType = Literal["image", "file"]


class ChatMessage(BaseModel):
    """A message of one conversation, optionally hydrated with `sender_name`.

    `sender_name` is not stored; it is resolved every time the message is
    fetched or delivered live.
    """

    id: str
    client_id: str
    sender_id: str
    is_from_client: bool
    message: str = ""
    attachment_url: str | None = None
    attachment_type: AttachmentType | None = None
    is_read: bool = False
    created_at: datetime
    sender_name: str | None = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def has_attachment(self) -> bool:
        return bool(self.attachment_url)

    def is_incoming_for(self, viewer_is_admin: bool) -> bool:
        """Return True when a viewer of the given role is the recipient."""
        return self.is_from_client == viewer_is_admin


class ChatMessageCreate(BaseModel):
    """Schema for sending a message into a conversation."""

    message: str = Field("", max_length=10_000, description="Plain-text body")
    attachment_url: str | None = Field(None, description="URL returned by the attachment upload")
    attachment_type: AttachmentType | None = Field(None, description="Coarse attachment kind")


class AttachmentResponse(BaseModel):
    """Result of an attachment upload."""

    url: str
    type: AttachmentType
    path: str


class ConversationSummary(BaseModel):
    """One row of the admin conversation list."""

    client_id: str
    name: str
    company: str = ""
    avatar: str | None = None
    unread_count: int = 0
    last_message: str | None = None
    last_message_at: datetime | None = None
