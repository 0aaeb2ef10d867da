# mcp_ledger/credentials/sqlite_credential_store.py
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import ProviderCredential
from .storage_interfaces import AbstractCredentialStore
from ..settings import settings
from ..storage.sqlite_store import SQLiteStoreMixin
from ..utils.security import FernetEncryptor

logger = logging.getLogger(__name__)


class SQLiteCredentialStore(SQLiteStoreMixin, AbstractCredentialStore):
    """
    Stores one ProviderCredential per (user, provider).

    The serialized credential is Fernet-encrypted when a valid
    CREDENTIAL_ENCRYPTION_KEY is configured; rows written without a key stay
    readable after a key is added because `is_encrypted` is tracked per row.
    """

    store_name = "SQLiteCredentialStore"

    def __init__(self, encryptor: Optional[FernetEncryptor] = None):
        self.encryptor = encryptor or FernetEncryptor(settings.credential_encryption_key)

    def _serialize(self, credential: ProviderCredential) -> tuple:
        payload = credential.model_dump_json()
        if self.encryptor.key_valid:
            encrypted = self.encryptor.encrypt(payload)
            if encrypted is not None:
                return encrypted, 1
        return payload, 0

    def _deserialize(self, data: str, is_encrypted: bool, user_id: str) -> Optional[ProviderCredential]:
        if is_encrypted:
            decrypted = self.encryptor.decrypt(data)
            if decrypted is None:
                logger.error(f"Could not decrypt stored credential for user {user_id}.")
                return None
            data = decrypted
        try:
            return ProviderCredential.model_validate(json.loads(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Error deserializing stored credential for user {user_id}: {e}", exc_info=True)
            return None

    async def get_credential(self, user_id: str, provider: str = "xero") -> Optional[ProviderCredential]:
        row = await self._fetchone(
            "SELECT credential_data, is_encrypted FROM provider_credentials WHERE user_id = ? AND provider = ?",
            (user_id, provider),
        )
        if not row:
            return None
        return self._deserialize(row["credential_data"], bool(row["is_encrypted"]), user_id)

    async def save_credential(self, credential: ProviderCredential) -> None:
        credential.updated_at = datetime.now(timezone.utc)
        data, is_encrypted = self._serialize(credential)
        await self._execute_query(
            '''
            INSERT INTO provider_credentials (user_id, provider, credential_data, is_encrypted, expires_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                credential_data=excluded.credential_data,
                is_encrypted=excluded.is_encrypted,
                expires_at=excluded.expires_at,
                updated_at=excluded.updated_at
            ''',
            (
                credential.user_id, credential.provider, data, is_encrypted,
                credential.expires_at.isoformat(), credential.updated_at.isoformat(),
            ),
        )
        logger.info(
            f"Saved {credential.provider} credential for user {credential.user_id} "
            f"(encrypted={bool(is_encrypted)}, expires_at={credential.expires_at.isoformat()})."
        )

    async def delete_credential(self, user_id: str, provider: str = "xero") -> bool:
        cursor = await self._execute_query(
            "DELETE FROM provider_credentials WHERE user_id = ? AND provider = ?", (user_id, provider)
        )
        logger.info(f"Deleted {provider} credential for user {user_id}: {cursor.rowcount > 0}")
        return cursor.rowcount > 0

    async def save_connect_state(self, state: str, user_id: str, provider: str, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        await self._execute_query(
            "INSERT INTO upstream_connect_states (state, user_id, provider, expires_at) VALUES (?, ?, ?, ?)",
            (state, user_id, provider, expires_at.isoformat()),
        )

    async def consume_connect_state(self, state: str, provider: str) -> Optional[str]:
        row = await self._fetchone(
            "SELECT user_id, expires_at FROM upstream_connect_states WHERE state = ? AND provider = ?",
            (state, provider),
        )
        if not row:
            return None
        cursor = await self._execute_query("DELETE FROM upstream_connect_states WHERE state = ?", (state,))
        if cursor.rowcount == 0:
            # Another request consumed it first
            return None
        if datetime.fromisoformat(row["expires_at"]) <= datetime.now(timezone.utc):
            logger.warning(f"Connect state for provider {provider} expired before use.")
            return None
        return row["user_id"]

    async def delete_expired_connect_states(self) -> int:
        cursor = await self._execute_query(
            "DELETE FROM upstream_connect_states WHERE expires_at < ?", (datetime.now(timezone.utc).isoformat(),)
        )
        if cursor.rowcount:
            logger.info(f"Deleted {cursor.rowcount} expired upstream connect states.")
        return cursor.rowcount


_sqlite_credential_store_instance: Optional[SQLiteCredentialStore] = None


async def get_sqlite_credential_store() -> SQLiteCredentialStore:
    """Get or create the singleton SQLiteCredentialStore instance."""
    global _sqlite_credential_store_instance
    if _sqlite_credential_store_instance is None:
        _sqlite_credential_store_instance = SQLiteCredentialStore()
        await _sqlite_credential_store_instance.initialize()
    return _sqlite_credential_store_instance
