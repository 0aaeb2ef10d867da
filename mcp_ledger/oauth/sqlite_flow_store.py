# mcp_ledger/oauth/sqlite_flow_store.py
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from .models import FlowStatus, OAuthAuthorizationFlow
from .storage_interfaces import AbstractAuthorizationFlowStore
from ..storage.sqlite_store import SQLiteStoreMixin

logger = logging.getLogger(__name__)


class SQLiteAuthorizationFlowStore(SQLiteStoreMixin, AbstractAuthorizationFlowStore):
    """
    Stores each flow as JSON plus the indexed columns used for lookups.

    `status`, `code` and `access_token_hash` are duplicated out of the JSON so
    transitions can be compare-and-set on `status` in a single UPDATE.
    """

    store_name = "SQLiteAuthorizationFlowStore"

    @staticmethod
    def _row_to_flow(row) -> Optional[OAuthAuthorizationFlow]:
        if not row:
            return None
        try:
            return OAuthAuthorizationFlow.model_validate_json(row["flow_data"])
        except PydanticValidationError as e:
            logger.error(f"Stored OAuth flow {row['flow_id']} is corrupt: {e}")
            return None

    async def create_flow(self, flow: OAuthAuthorizationFlow) -> None:
        await self._execute_query(
            '''
            INSERT INTO oauth_authorization_flows
                (flow_id, client_id, status, code, access_token_hash, flow_data, expires_at, token_expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (
                flow.flow_id, flow.client_id, flow.status.value, flow.code, flow.access_token_hash,
                flow.model_dump_json(), flow.expires_at.isoformat(),
                flow.token_expires_at.isoformat() if flow.token_expires_at else None,
            ),
        )
        logger.debug(f"Created OAuth flow for client '{flow.client_id}' (status={flow.status.value}).")

    async def get_flow(self, flow_id: str) -> Optional[OAuthAuthorizationFlow]:
        row = await self._fetchone(
            "SELECT flow_id, flow_data FROM oauth_authorization_flows WHERE flow_id = ?", (flow_id,)
        )
        return self._row_to_flow(row)

    async def get_flow_by_code(self, code: str) -> Optional[OAuthAuthorizationFlow]:
        row = await self._fetchone(
            "SELECT flow_id, flow_data FROM oauth_authorization_flows WHERE code = ?", (code,)
        )
        return self._row_to_flow(row)

    async def get_flow_by_token_hash(self, access_token_hash: str) -> Optional[OAuthAuthorizationFlow]:
        row = await self._fetchone(
            "SELECT flow_id, flow_data FROM oauth_authorization_flows WHERE access_token_hash = ?",
            (access_token_hash,),
        )
        return self._row_to_flow(row)

    async def transition(self, flow: OAuthAuthorizationFlow, expected_status: FlowStatus) -> bool:
        cursor = await self._execute_query(
            '''
            UPDATE oauth_authorization_flows
            SET status = ?, code = ?, access_token_hash = ?, flow_data = ?, expires_at = ?, token_expires_at = ?
            WHERE flow_id = ? AND status = ?
            ''',
            (
                flow.status.value, flow.code, flow.access_token_hash, flow.model_dump_json(),
                flow.expires_at.isoformat(),
                flow.token_expires_at.isoformat() if flow.token_expires_at else None,
                flow.flow_id, expected_status.value,
            ),
        )
        moved = cursor.rowcount == 1
        if moved:
            logger.info(f"OAuth flow moved {expected_status.value} -> {flow.status.value}.")
        else:
            logger.warning(
                f"OAuth flow transition {expected_status.value} -> {flow.status.value} lost a race or was replayed."
            )
        return moved

    async def delete_expired(self) -> int:
        """Drop flows that never produced a token and whose TTL has passed, and expired tokens."""
        now = datetime.now(timezone.utc).isoformat()
        cursor = await self._execute_query(
            '''
            DELETE FROM oauth_authorization_flows
            WHERE (token_expires_at IS NULL AND expires_at < ?)
               OR (token_expires_at IS NOT NULL AND token_expires_at < ?)
            ''',
            (now, now),
        )
        if cursor.rowcount:
            logger.info(f"Deleted {cursor.rowcount} expired OAuth flows.")
        return cursor.rowcount


_sqlite_flow_store_instance: Optional[SQLiteAuthorizationFlowStore] = None


async def get_sqlite_flow_store() -> SQLiteAuthorizationFlowStore:
    """Get or create the singleton SQLiteAuthorizationFlowStore instance."""
    global _sqlite_flow_store_instance
    if _sqlite_flow_store_instance is None:
        _sqlite_flow_store_instance = SQLiteAuthorizationFlowStore()
        await _sqlite_flow_store_instance.initialize()
    return _sqlite_flow_store_instance
