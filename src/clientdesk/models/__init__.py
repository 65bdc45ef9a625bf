"""SQLAlchemy models for the ClientDesk application."""

from .client import Client
from .client_message import ClientMessage
from .profile import ROLE_ADMIN, ROLE_CLIENT, Profile

__all__ = [
    "Client",
    "ClientMessage",
    "Profile",
    "ROLE_ADMIN", "ROLE_CLIENT",
]
