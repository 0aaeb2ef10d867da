# mcp_ledger/admin/__init__.py
from .endpoints import (
    invites_admin_router,
    users_admin_router,
    permissions_admin_router,
    snapshots_admin_router,
)

__all__ = [
    "invites_admin_router",
    "users_admin_router",
    "permissions_admin_router",
    "snapshots_admin_router",
]
