# src/clientdesk/scripts/issue_token.py
"""Print a bearer token for an existing profile.

Sign-in is handled by the identity provider in front of this service; this
helper exists for operators and local development.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from clientdesk.api.v1.dependencies import load_viewer
from clientdesk.backend.context import BackendContext
from clientdesk.core.security import create_access_token
from clientdesk.core.settings import settings


async def _issue(profile_id: str) -> str | None:
    backend = BackendContext.from_settings(settings)
    try:
        viewer = await load_viewer(backend.database, profile_id)
    finally:
        await backend.close()
    if viewer is None:
        return None
    return create_access_token(profile_id)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("profile_id", help="id of the profile to issue a token for")
    args = parser.parse_args(argv)

    token = asyncio.run(_issue(args.profile_id))
    if token is None:
        print(f"No profile with id {args.profile_id}", file=sys.stderr)
        return 1
    print(token)
    return 0


if __name__ == "__main__":
    sys.exit(main())
