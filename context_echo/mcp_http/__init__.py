"""HTTP server components for the shared MCP memory server."""

from .session_manager import Session, SessionRegistry
from .router import RequestRouter, ResponseGuard, session_id_for
from .app import create_app

__all__ = [
    "Session",
    "SessionRegistry",
    "RequestRouter",
    "ResponseGuard",
    "session_id_for",
    "create_app",
]
