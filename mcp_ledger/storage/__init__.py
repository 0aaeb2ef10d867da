# mcp_ledger/storage/__init__.py

"""Storage module initialization.

Provides the shared SQLite connection used by every store in the gateway.
"""

from .sqlite_base import (
    get_sqlite_db_connection,
    init_sqlite_db,
    close_sqlite_db_connection
)

__all__ = [
    "get_sqlite_db_connection",
    "init_sqlite_db",
    "close_sqlite_db_connection"
]
