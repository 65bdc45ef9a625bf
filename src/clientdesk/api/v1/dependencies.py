"""Shared API dependencies for authentication and conversation access."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clientdesk.backend.context import BackendContext
from clientdesk.backend.database import Database
from clientdesk.backend.errors import DatabaseError
from clientdesk.core.security import InvalidTokenError, decode_access_token
from clientdesk.models import ROLE_ADMIN
from clientdesk.services.chat import ChatServices
from clientdesk.services.viewer import Viewer

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()


def get_backend(request: Request) -> BackendContext:
    """Return the backend context created at startup."""
    return request.app.state.backend


def get_chat_services(request: Request) -> ChatServices:
    """Return the chat services created at startup."""
    return request.app.state.chat


BackendDep = Annotated[BackendContext, Depends(get_backend)]
ChatServicesDep = Annotated[ChatServices, Depends(get_chat_services)]


async def load_viewer(database: Database, profile_id: str) -> Viewer | None:
    """Build the viewer for `profile_id`, or None when no profile exists.

    Raises:
        DatabaseError: If the profile or client lookup fails.
    """
    profiles = await database.select(
        "profiles", {"id": profile_id}, columns=("id", "role"), limit=1
    )
    if not profiles:
        return None

    if profiles[0]["role"] == ROLE_ADMIN:
        return Viewer(user_id=profile_id, is_admin=True)

    clients = await database.select(
        "clients", {"user_id": profile_id}, columns=("id",), limit=1
    )
    return Viewer(
        user_id=profile_id,
        is_admin=False,
        client_id=clients[0]["id"] if clients else None,
    )


async def get_current_viewer(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    backend: BackendDep,
) -> Viewer:
    """Get the current viewer from the bearer token.

    Raises:
        HTTPException: If the token is invalid or the profile does not exist.
    """
    try:
        profile_id = decode_access_token(credentials.credentials)
    except InvalidTokenError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    try:
        viewer = await load_viewer(backend.database, profile_id)
    except DatabaseError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not load profile",
        ) from err

    if viewer is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return viewer


CurrentViewerDep = Annotated[Viewer, Depends(get_current_viewer)]


async def get_conversation_id(
    client_id: str,
    viewer: CurrentViewerDep,
    backend: BackendDep,
) -> str:
    """Validate that `client_id` exists and the viewer may open it."""
    if not viewer.can_access(client_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have permission to access this chat",
        )
    try:
        clients = await backend.database.select(
            "clients", {"id": client_id}, columns=("id",), limit=1
        )
    except DatabaseError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not load client",
        ) from err
    if not clients:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Client not found",
        )
    return client_id


ConversationDep = Annotated[str, Depends(get_conversation_id)]
