"""The party looking at a conversation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Viewer:
    """An authenticated admin, or a client bound to its own conversation."""

    user_id: str
    is_admin: bool
    client_id: str | None = None

    def can_access(self, client_id: str) -> bool:
        return self.is_admin or self.client_id == client_id
