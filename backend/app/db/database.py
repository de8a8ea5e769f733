"""SQLite database connection and schema initialization."""

from pathlib import Path

import aiosqlite

# Global connection holder
_db_connection: aiosqlite.Connection | None = None


async def init_database(db_path: str) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row

    # Enable foreign keys
    await _db_connection.execute("PRAGMA foreign_keys = ON")

    # Create schema
    await _create_schema(_db_connection)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection
    if _db_connection:
        await _db_connection.close()
        _db_connection = None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db_connection is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _db_connection


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables and indexes."""
    # Workflows with their editable state and deployment info
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflows (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            state_json TEXT NOT NULL DEFAULT '{}',
            variables_json TEXT NOT NULL DEFAULT '{}',
            is_deployed INTEGER NOT NULL DEFAULT 0,
            deployed_at TEXT,
            api_key TEXT,
            run_count INTEGER NOT NULL DEFAULT 0,
            last_run_at TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_workflows_user
        ON workflows(user_id, updated_at)
    """)

    # Per-user environment variables, values are Fernet-encrypted
    await db.execute("""
        CREATE TABLE IF NOT EXISTS environment (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL UNIQUE,
            variables_json TEXT NOT NULL DEFAULT '{}',
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    # Execution logs
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_logs (
            id TEXT PRIMARY KEY,
            workflow_id TEXT NOT NULL,
            execution_id TEXT,
            level TEXT NOT NULL,
            message TEXT NOT NULL,
            duration TEXT,
            trigger TEXT NOT NULL,
            metadata_json TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (workflow_id) REFERENCES workflows(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_workflow_logs_workflow
        ON workflow_logs(workflow_id, created_at)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_workflow_logs_execution
        ON workflow_logs(execution_id)
    """)

    # Per-user usage counters
    await db.execute("""
        CREATE TABLE IF NOT EXISTS user_stats (
            user_id TEXT PRIMARY KEY,
            total_api_calls INTEGER NOT NULL DEFAULT 0,
            total_manual_executions INTEGER NOT NULL DEFAULT 0,
            total_webhook_triggers INTEGER NOT NULL DEFAULT 0,
            total_scheduled_executions INTEGER NOT NULL DEFAULT 0,
            total_chat_executions INTEGER NOT NULL DEFAULT 0,
            last_active TEXT
        )
    """)

    await db.commit()
