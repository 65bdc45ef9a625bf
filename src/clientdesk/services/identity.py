"""Sender identity resolution against the profiles table."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from clientdesk.backend.database import Database, in_
from clientdesk.backend.errors import DatabaseError
from clientdesk.services.errors import ResolutionError

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"
PROFILES_TABLE = "profiles"


@dataclass(frozen=True)
class NameResolution:
    """Display names for a set of sender ids.

    Every requested id is present in `names`. When the lookup failed, all of
    them map to the fallback and `error` carries the recovered failure.
    """

    names: dict[str, str] = field(default_factory=dict)
    error: ResolutionError | None = None

    @property
    def recovered(self) -> bool:
        return self.error is not None

    def name_for(self, sender_id: str) -> str:
        return self.names.get(sender_id, UNKNOWN_USER)


def _display_name(profile: dict) -> str:
    full_name = (profile.get("full_name") or "").strip()
    return full_name or UNKNOWN_USER


class IdentityResolver:
    """Maps sender ids to display names with one query per call."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def resolve(self, sender_ids: Iterable[str]) -> NameResolution:
        """Resolve `sender_ids` in a single batched profile lookup."""
        unique_ids = sorted({sender_id for sender_id in sender_ids if sender_id})
        if not unique_ids:
            return NameResolution()

        try:
            profiles = await self.database.select(
                PROFILES_TABLE,
                {"id": in_(unique_ids)},
                columns=("id", "full_name"),
            )
        except DatabaseError as exc:
            logger.warning("Profile lookup for %d sender(s) failed: %s", len(unique_ids), exc)
            error = ResolutionError(f"Could not resolve {len(unique_ids)} sender name(s)")
            error.__cause__ = exc
            return NameResolution(
                names={sender_id: UNKNOWN_USER for sender_id in unique_ids},
                error=error,
            )

        found = {profile["id"]: _display_name(profile) for profile in profiles}
        return NameResolution(
            names={sender_id: found.get(sender_id, UNKNOWN_USER) for sender_id in unique_ids}
        )

    async def resolve_names(self, sender_ids: Iterable[str]) -> dict[str, str]:
        """Return `{sender_id: display name}`, falling back to "Unknown User"."""
        return (await self.resolve(sender_ids)).names

    async def resolve_name(self, sender_id: str) -> str:
        """Look up a single sender, for the one-message realtime path."""
        if not sender_id:
            return UNKNOWN_USER
        try:
            profiles = await self.database.select(
                PROFILES_TABLE,
                {"id": sender_id},
                columns=("id", "full_name"),
                limit=1,
            )
        except DatabaseError as exc:
            logger.warning("Profile lookup for sender %s failed: %s", sender_id, exc)
            return UNKNOWN_USER
        if not profiles:
            return UNKNOWN_USER
        return _display_name(profiles[0])
