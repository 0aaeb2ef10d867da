# mcp_ledger/storage/sqlite_base.py
import sqlite3
import logging
from pathlib import Path
from typing import Optional

from ..settings import settings

logger = logging.getLogger(__name__)

# Global connection instance to ensure single connection per application lifecycle
_db_connection: Optional[sqlite3.Connection] = None


async def get_sqlite_db_connection() -> sqlite3.Connection:
    """
    Get or create the shared SQLite database connection.

    Uses a singleton pattern so every store shares one connection. Ensures the
    database directory exists, turns on foreign-key enforcement (memory
    cascades depend on it) and initializes the schema on first connection.

    Returns:
        sqlite3.Connection: The database connection instance

    Raises:
        sqlite3.Error: If database connection fails
    """
    global _db_connection
    if _db_connection is None:
        try:
            if settings.sqlite_db_path == ":memory:":
                target = ":memory:"
            else:
                db_path = Path(settings.sqlite_db_path).resolve()
                db_path.parent.mkdir(parents=True, exist_ok=True)
                target = str(db_path)

            logger.info(f"Attempting to connect to SQLite DB at: {target}")

            # Enable thread-safe access for async/FastAPI compatibility
            conn = sqlite3.connect(target, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            _db_connection = conn

            logger.info(f"Successfully connected to SQLite DB: {target}")

            await init_sqlite_db(_db_connection)
        except sqlite3.Error as e:
            logger.error(
                f"Error connecting to SQLite database at {settings.sqlite_db_path}: {e}",
                exc_info=True
            )
            raise
    return _db_connection


async def init_sqlite_db(conn: Optional[sqlite3.Connection] = None):
    """
    Initialize the SQLite database schema by creating all required tables.

    Uses IF NOT EXISTS so repeated initialization is harmless.

    Args:
        conn: Optional database connection. If None, uses the global connection.
    """
    db_conn = conn or await get_sqlite_db_connection()
    cursor = db_conn.cursor()

    # Application user accounts and invite codes
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS app_users (
        user_id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        display_name TEXT,
        is_admin INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_login_at TEXT
    )
    ''')
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS invite_codes (
        code TEXT PRIMARY KEY,
        created_by TEXT,
        max_uses INTEGER NOT NULL DEFAULT 1,
        use_count INTEGER NOT NULL DEFAULT 0,
        expires_at TEXT,
        created_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'app_users' and 'invite_codes' tables exist.")

    # Per-user OAuth credentials for upstream providers
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS provider_credentials (
        user_id TEXT NOT NULL,
        provider TEXT NOT NULL,
        credential_data TEXT NOT NULL,
        is_encrypted INTEGER NOT NULL DEFAULT 0,
        expires_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, provider)
    )
    ''')
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS upstream_connect_states (
        state TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        provider TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'provider_credentials' and 'upstream_connect_states' tables exist.")

    # Permission tiers and audit snapshots
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS permission_settings (
        user_id TEXT PRIMARY KEY,
        permission_level INTEGER NOT NULL DEFAULT 0,
        vacation_mode_until TEXT,
        updated_at TEXT NOT NULL
    )
    ''')
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS permission_overrides (
        user_id TEXT NOT NULL,
        capability_group TEXT NOT NULL,
        permission_level INTEGER NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, capability_group)
    )
    ''')
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS operation_snapshots (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        operation_name TEXT NOT NULL,
        required_level INTEGER NOT NULL,
        capability_group TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT,
        arguments TEXT,
        before_state TEXT,
        after_state TEXT,
        requested_by TEXT NOT NULL,
        status TEXT NOT NULL,
        error_message TEXT,
        created_at TEXT NOT NULL,
        executed_at TEXT
    )
    ''')
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_snapshots_user ON operation_snapshots(user_id, created_at)"
    )
    logger.info("Ensured permission and 'operation_snapshots' tables exist.")

    # Knowledge-graph memory
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS memory_entities (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        project_id TEXT,
        name TEXT NOT NULL COLLATE NOCASE,
        entity_type TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (user_id, name)
    )
    ''')
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS memory_observations (
        id TEXT PRIMARY KEY,
        entity_id TEXT NOT NULL REFERENCES memory_entities(id) ON DELETE CASCADE,
        text TEXT NOT NULL,
        importance TEXT NOT NULL DEFAULT 'normal',
        is_user_edit INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    ''')
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS memory_relations (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        from_entity_id TEXT NOT NULL REFERENCES memory_entities(id) ON DELETE CASCADE,
        to_entity_id TEXT NOT NULL REFERENCES memory_entities(id) ON DELETE CASCADE,
        relation_type TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (from_entity_id, to_entity_id, relation_type)
    )
    ''')
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS memory_summaries (
        user_id TEXT NOT NULL,
        project_key TEXT NOT NULL,
        summary TEXT NOT NULL,
        entity_count INTEGER NOT NULL,
        observation_count INTEGER NOT NULL,
        generated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, project_key)
    )
    ''')
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_mem_ent_scope ON memory_entities(user_id, project_id)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_mem_obs_entity ON memory_observations(entity_id)"
    )
    logger.info("Ensured memory tables exist.")

    # Authorization-code flows when the gateway acts as OAuth Authorization Server
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS oauth_authorization_flows (
        flow_id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        status TEXT NOT NULL,
        code TEXT UNIQUE,
        access_token_hash TEXT UNIQUE,
        flow_data TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        token_expires_at TEXT
    )
    ''')
    logger.info("Ensured 'oauth_authorization_flows' table exists.")

    db_conn.commit()
    logger.info("SQLite database schema initialized/verified.")


async def close_sqlite_db_connection():
    """
    Properly close the global SQLite database connection.

    Should be called during application shutdown (and between tests) so the
    next caller opens a fresh connection against the configured path.
    """
    global _db_connection
    if _db_connection is not None:
        logger.info("Closing SQLite DB connection.")
        _db_connection.close()
        _db_connection = None
        logger.info("SQLite DB connection closed.")
