"""Model for chat messages exchanged between admins and a client."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clientdesk.db.session import Base
from clientdesk.db.time import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class ClientMessage(Base):
    """A single message in the conversation keyed by `client_id`.

    The conversation is append-only; the only mutation after insert is the
    false-to-true flip of `is_read` by the counter-party.
    """

    __tablename__ = "client_messages"
    __table_args__ = (Index("ix_client_messages_client_created", "client_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_from_client: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
