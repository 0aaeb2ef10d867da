# mcp_ledger/credentials/sqlite_account_store.py
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional, List

from .models import AppUser, InviteCode
from .storage_interfaces import AbstractAccountStore
from ..core.errors import ValidationError
from ..storage.sqlite_store import SQLiteStoreMixin

logger = logging.getLogger(__name__)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_user(row: sqlite3.Row) -> AppUser:
    return AppUser(
        user_id=row["user_id"],
        email=row["email"],
        password_hash=row["password_hash"],
        display_name=row["display_name"],
        is_admin=bool(row["is_admin"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        last_login_at=_parse_dt(row["last_login_at"]),
    )


def _row_to_invite(row: sqlite3.Row) -> InviteCode:
    return InviteCode(
        code=row["code"],
        created_by=row["created_by"],
        max_uses=row["max_uses"],
        use_count=row["use_count"],
        expires_at=_parse_dt(row["expires_at"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SQLiteAccountStore(SQLiteStoreMixin, AbstractAccountStore):
    """SQLite-backed gateway accounts and invite codes."""

    store_name = "SQLiteAccountStore"

    async def create_user(self, user: AppUser) -> AppUser:
        try:
            await self._execute_query(
                '''
                INSERT INTO app_users (user_id, email, password_hash, display_name, is_admin, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ''',
                (
                    user.user_id, user.email.strip(), user.password_hash, user.display_name,
                    int(user.is_admin), user.created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError:
            raise ValidationError(
                "An account with this email already exists.",
                fields=[{"field": "email", "message": "Email is already registered."}],
            )
        logger.info(f"Created user {user.user_id} ({user.email}).")
        return user

    async def get_user_by_email(self, email: str) -> Optional[AppUser]:
        row = await self._fetchone("SELECT * FROM app_users WHERE email = ?", (email.strip(),))
        return _row_to_user(row) if row else None

    async def get_user(self, user_id: str) -> Optional[AppUser]:
        row = await self._fetchone("SELECT * FROM app_users WHERE user_id = ?", (user_id,))
        return _row_to_user(row) if row else None

    async def list_users(self) -> List[AppUser]:
        rows = await self._fetchall("SELECT * FROM app_users ORDER BY created_at")
        return [_row_to_user(row) for row in rows]

    async def record_login(self, user_id: str) -> None:
        await self._execute_query(
            "UPDATE app_users SET last_login_at = ? WHERE user_id = ?",
            (datetime.now(timezone.utc).isoformat(), user_id),
        )

    async def update_password_hash(self, user_id: str, password_hash: str) -> None:
        await self._execute_query(
            "UPDATE app_users SET password_hash = ? WHERE user_id = ?", (password_hash, user_id)
        )

    async def create_invite(self, invite: InviteCode) -> InviteCode:
        await self._execute_query(
            '''
            INSERT INTO invite_codes (code, created_by, max_uses, use_count, expires_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ''',
            (
                invite.code, invite.created_by, invite.max_uses, invite.use_count,
                invite.expires_at.isoformat() if invite.expires_at else None,
                invite.created_at.isoformat(),
            ),
        )
        logger.info(f"Created invite code (max_uses={invite.max_uses}, expires_at={invite.expires_at}).")
        return invite

    async def list_invites(self) -> List[InviteCode]:
        rows = await self._fetchall("SELECT * FROM invite_codes ORDER BY created_at DESC")
        return [_row_to_invite(row) for row in rows]

    async def redeem_invite(self, code: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        cursor = await self._execute_query(
            '''
            UPDATE invite_codes SET use_count = use_count + 1
            WHERE code = ? AND use_count < max_uses AND (expires_at IS NULL OR expires_at > ?)
            ''',
            (code.strip(), now),
        )
        redeemed = cursor.rowcount == 1
        if not redeemed:
            logger.warning("Invite code redemption refused (unknown, used up or expired).")
        return redeemed


_sqlite_account_store_instance: Optional[SQLiteAccountStore] = None


async def get_sqlite_account_store() -> SQLiteAccountStore:
    """Get or create the singleton SQLiteAccountStore instance."""
    global _sqlite_account_store_instance
    if _sqlite_account_store_instance is None:
        _sqlite_account_store_instance = SQLiteAccountStore()
        await _sqlite_account_store_instance.initialize()
    return _sqlite_account_store_instance
