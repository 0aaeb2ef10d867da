# mcp_ledger/sessions/__init__.py
"""
Session management for the gateway.

Provides the session record, the in-memory and Redis stores, and the
SessionManager that binds transport connections to sessions.
"""

from .session_data import SessionData, TransportState
from .session_store import (
    AbstractSessionStore, InMemorySessionStore, RedisGatewaySessionStore, create_session_store,
)
from .session_manager import SessionManager

__all__ = [
    "SessionData",
    "TransportState",
    "AbstractSessionStore",
    "InMemorySessionStore",
    "RedisGatewaySessionStore",
    "create_session_store",
    "SessionManager",
]
