# mcp_ledger/storage/sqlite_store.py
import sqlite3
import logging
from typing import List, Optional

from .sqlite_base import get_sqlite_db_connection

logger = logging.getLogger(__name__)


class SQLiteStoreMixin:
    """
    Query helpers shared by every SQLite-backed store.

    Each helper runs its statement and commits (or rolls back) before
    returning, so no coroutine ever holds an open transaction across an await.
    """

    store_name: str = "SQLiteStore"

    async def initialize(self) -> None:
        """Ensure the shared connection (and therefore the schema) exists."""
        await get_sqlite_db_connection()
        logger.info(f"{self.store_name} initialized.")

    async def teardown(self) -> None:
        logger.info(f"{self.store_name} teardown.")

    async def _execute_query(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        """
        Execute a write statement with commit/rollback handling.

        Args:
            query: SQL statement to execute
            params: Parameters to bind to the statement

        Returns:
            Database cursor after execution (use `rowcount` for compare-and-set checks)

        Raises:
            sqlite3.Error: If the database operation fails
        """
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite error in {self.store_name}: {e}", exc_info=True)
            conn.rollback()
            raise
        return cursor

    async def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            return cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"SQLite error in {self.store_name}: {e}", exc_info=True)
            raise

    async def _fetchall(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        conn = await get_sqlite_db_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            return cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"SQLite error in {self.store_name}: {e}", exc_info=True)
            raise
