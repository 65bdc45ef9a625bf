"""Ordered conversation view and presentational rendering of messages."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from typing import Any

from clientdesk.schemas.chat_message import ChatMessage

EMPTY_CONVERSATION = "No messages yet. Start a conversation!"


def _sort_key(message: ChatMessage) -> tuple:
    return (message.created_at, message.id)


class ConversationView:
    """Deduplicated, `created_at`-ordered messages of one conversation.

    Live events may arrive out of order or repeat a message already present
    in fetched history; both are reconciled here by sorting, never by
    appending.
    """

    def __init__(self, client_id: str, messages: Iterable[ChatMessage] = ()) -> None:
        self.client_id = client_id
        self._by_id: dict[str, ChatMessage] = {}
        self._ordered: list[ChatMessage] = []
        self.load(messages)

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self):
        return iter(self._ordered)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._ordered)

    def load(self, messages: Iterable[ChatMessage]) -> None:
        """Merge a fetched history into the view."""
        for message in messages:
            if message.client_id == self.client_id:
                self._by_id[message.id] = message
        self._ordered = sorted(self._by_id.values(), key=_sort_key)

    def add(self, message: ChatMessage) -> bool:
        """Merge one live message; return False when it was already present."""
        if message.client_id != self.client_id or message.id in self._by_id:
            return False
        self._by_id[message.id] = message
        self._ordered.append(message)
        if len(self._ordered) > 1 and _sort_key(self._ordered[-2]) > _sort_key(message):
            self._ordered.sort(key=_sort_key)
        return True

    def previous_id(self, message_id: str) -> str | None:
        """Return the id ordered just before `message_id`, None when it is first."""
        for index, message in enumerate(self._ordered):
            if message.id == message_id:
                return self._ordered[index - 1].id if index else None
        raise KeyError(message_id)


def group_by_day(messages: Sequence[ChatMessage]) -> list[tuple[date, list[ChatMessage]]]:
    """Split an ordered sequence into runs sharing a calendar day (UTC)."""
    groups: list[tuple[date, list[ChatMessage]]] = []
    for message in messages:
        day = message.created_at.date()
        if groups and groups[-1][0] == day:
            groups[-1][1].append(message)
        else:
            groups.append((day, [message]))
    return groups


def _initial(name: str | None, fallback: str) -> str:
    name = (name or "").strip()
    return name[0].upper() if name else fallback


def render_attachment(message: ChatMessage) -> dict[str, Any] | None:
    if not message.attachment_url:
        return None
    if message.attachment_type == "image":
        return {"kind": "image", "url": message.attachment_url, "alt": "Attachment"}
    return {"kind": "file", "url": message.attachment_url, "label": "Attachment"}


def render_message(message: ChatMessage, current_user_id: str) -> dict[str, Any]:
    """Return the display payload of one message for `current_user_id`."""
    is_current_user = message.sender_id == current_user_id
    return {
        "id": message.id,
        "is_current_user": is_current_user,
        "sender_name": message.sender_name,
        "avatar_initial": _initial(message.sender_name, "Y" if is_current_user else "?"),
        "text": message.message,
        "attachment": render_attachment(message),
        "is_read": message.is_read,
        "created_at": message.created_at.isoformat(),
        "display_time": message.created_at.strftime("%b %d, %I:%M %p").replace(" 0", " "),
    }


def render_transcript(messages: Sequence[ChatMessage], current_user_id: str) -> dict[str, Any]:
    """Render a conversation grouped by day, or the empty-state text."""
    if not messages:
        return {"days": [], "empty_message": EMPTY_CONVERSATION}
    return {
        "days": [
            {
                "date": day.isoformat(),
                "messages": [render_message(message, current_user_id) for message in group],
            }
            for day, group in group_by_day(messages)
        ],
        "empty_message": None,
    }
