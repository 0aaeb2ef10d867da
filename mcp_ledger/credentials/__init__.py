# mcp_ledger/credentials/__init__.py
from .models import ProviderCredential, AppUser, AppUserPublic, InviteCode, InviteCodeCreate
from .storage_interfaces import AbstractCredentialStore, AbstractAccountStore
from .sqlite_credential_store import SQLiteCredentialStore, get_sqlite_credential_store
from .sqlite_account_store import SQLiteAccountStore, get_sqlite_account_store

__all__ = [
    "ProviderCredential",
    "AppUser",
    "AppUserPublic",
    "InviteCode",
    "InviteCodeCreate",
    "AbstractCredentialStore",
    "AbstractAccountStore",
    "SQLiteCredentialStore",
    "get_sqlite_credential_store",
    "SQLiteAccountStore",
    "get_sqlite_account_store",
]
