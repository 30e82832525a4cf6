"""
infrastructure.persistence.migrations - Database schema creation.

Every collection lives in one ``documents`` table keyed by full document
path. Called once at startup by the factory or the CLI.
"""

from __future__ import annotations

import logging

from infrastructure.persistence.connection import AsyncSQLiteConnection

logger = logging.getLogger(__name__)

_STATEMENTS = [
    "PRAGMA journal_mode=WAL",
    """CREATE TABLE IF NOT EXISTS documents (
        path TEXT PRIMARY KEY,
        collection TEXT NOT NULL,
        doc_id TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    )""",
    """CREATE INDEX IF NOT EXISTS idx_documents_collection
        ON documents (collection)""",
]


async def run_migrations(connection: AsyncSQLiteConnection) -> None:
    """Create all tables if they don't exist.

    Safe to call multiple times (uses IF NOT EXISTS).
    """
    async with connection.acquire() as conn:
        for statement in _STATEMENTS:
            await conn.execute(statement)
    logger.info("Document tables created (or already exist).")
